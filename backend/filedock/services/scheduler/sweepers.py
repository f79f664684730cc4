"""Background retention sweepers: trash expiry, temporary-namespace expiry and upload-staging expiry.

Each sweeper is its own asyncio task looping sweep -> sleep. A pass runs in a
worker thread, so cancelling the task never interrupts a filesystem call
halfway; the task stops at the next await.
"""

import asyncio
import logging
import os
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path

from filedock.core.config import Settings
from filedock.models.resource import Namespace
from filedock.services.resource_store import RESERVED_NAMES, ResourceStore

logger = logging.getLogger(__name__)


def expire_tree(root: Path, cutoff: datetime, skip_names: frozenset[str] = frozenset()) -> tuple[int, int]:
    """Delete files under root last modified before cutoff, then prune empty directories.

    Directories named in skip_names directly under root are left untouched,
    as is root itself. Returns (files_deleted, directories_removed).
    """
    if not root.is_dir():
        return 0, 0

    cutoff_ts = cutoff.timestamp()
    files_deleted = 0
    directories: list[Path] = []

    for dirpath, dirnames, filenames in os.walk(root):
        current = Path(dirpath)
        if current == root:
            dirnames[:] = [d for d in dirnames if d not in skip_names]
        directories.extend(current / d for d in dirnames)

        for filename in filenames:
            file_path = current / filename
            try:
                if file_path.lstat().st_mtime < cutoff_ts:
                    file_path.unlink()
                    files_deleted += 1
                    logger.info(f"Deleted expired file: {file_path}")
            except OSError as e:
                logger.warning(f"Failed to delete expired file {file_path}: {e}")

    directories_removed = 0
    for directory in sorted(directories, key=lambda d: len(d.parts), reverse=True):
        try:
            if directory.is_symlink() or any(directory.iterdir()):
                continue
            directory.rmdir()
            directories_removed += 1
            logger.info(f"Removed empty directory: {directory}")
        except OSError as e:
            logger.warning(f"Failed to remove directory {directory}: {e}")

    return files_deleted, directories_removed


def sweep_trash(store: ResourceStore, retention: timedelta, now: datetime | None = None) -> int:
    cutoff = (now or datetime.now(timezone.utc)) - retention
    purged = 0
    for namespace in Namespace:
        try:
            purged += store.cleanup_trash(namespace, cutoff)
        except Exception:
            logger.exception(f"Trash cleanup failed for {namespace.value}")
    return purged


def sweep_temporary(store: ResourceStore, retention: timedelta, now: datetime | None = None) -> int:
    cutoff = (now or datetime.now(timezone.utc)) - retention
    files, _ = expire_tree(store.namespace_root(Namespace.TEMPORARY), cutoff, skip_names=RESERVED_NAMES)
    return files


def sweep_uploads(store: ResourceStore, retention: timedelta, now: datetime | None = None) -> int:
    cutoff = (now or datetime.now(timezone.utc)) - retention
    deleted = 0
    for namespace in Namespace:
        try:
            files, _ = expire_tree(store.staging_root(namespace), cutoff)
            deleted += files
        except Exception:
            logger.exception(f"Upload staging cleanup failed for {namespace.value}")
    return deleted


async def sweeper_loop(name: str, interval: timedelta, sweep: Callable[[], int]) -> None:
    """Run sweep every interval until cancelled. Errors are logged, never raised."""
    logger.info(f"{name} sweeper started, interval {interval}")

    try:
        while True:
            try:
                removed = await asyncio.to_thread(sweep)
                if removed:
                    logger.info(f"{name} sweep removed {removed} item(s)")
            except Exception:
                logger.exception(f"{name} sweep failed")

            await asyncio.sleep(interval.total_seconds())
    except asyncio.CancelledError:
        logger.info(f"{name} sweeper stopped")
        raise


def start_sweepers(store: ResourceStore, settings: Settings) -> list[asyncio.Task]:
    interval = timedelta(seconds=settings.sweep_interval_seconds)
    trash_retention = timedelta(days=settings.trash_retention_days)
    temporary_retention = timedelta(hours=settings.temporary_retention_hours)
    upload_retention = timedelta(hours=settings.upload_retention_hours)

    return [
        asyncio.create_task(
            sweeper_loop("Trash", interval, lambda: sweep_trash(store, trash_retention)),
            name="trash-sweeper",
        ),
        asyncio.create_task(
            sweeper_loop("Temporary", interval, lambda: sweep_temporary(store, temporary_retention)),
            name="temporary-sweeper",
        ),
        asyncio.create_task(
            sweeper_loop("Upload staging", interval, lambda: sweep_uploads(store, upload_retention)),
            name="upload-sweeper",
        ),
    ]


async def stop_sweepers(tasks: list[asyncio.Task]) -> None:
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
