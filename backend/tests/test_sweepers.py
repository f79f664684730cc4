"""Tests for the retention sweepers and their background loop."""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

from filedock.models.resource import Namespace
from filedock.services.scheduler.sweepers import (
    expire_tree,
    start_sweepers,
    stop_sweepers,
    sweep_temporary,
    sweep_trash,
    sweep_uploads,
    sweeper_loop,
)
from filedock.services.trash_metadata import read_metadata, write_metadata
from tests.conftest import write_file

HOUR = 3600


def test_expire_tree_deletes_old_files_and_empty_dirs(tmp_path):
    old = write_file(tmp_path / "a" / "b" / "old.txt", age_seconds=10 * HOUR)
    fresh = write_file(tmp_path / "c" / "fresh.txt")
    (tmp_path / "empty").mkdir()

    files, dirs = expire_tree(tmp_path, datetime.now(timezone.utc) - timedelta(hours=1))

    assert files == 1
    assert not old.exists()
    assert not (tmp_path / "a").exists()
    assert not (tmp_path / "empty").exists()
    assert fresh.exists()
    assert dirs == 3
    assert tmp_path.is_dir()


def test_expire_tree_skips_named_top_level_dirs(tmp_path):
    keep = write_file(tmp_path / "keep" / "old.txt", age_seconds=10 * HOUR)
    nested = write_file(tmp_path / "x" / "keep" / "old.txt", age_seconds=10 * HOUR)

    expire_tree(tmp_path, datetime.now(timezone.utc), skip_names=frozenset({"keep"}))

    assert keep.exists()
    assert not nested.exists()


def test_expire_tree_missing_root(tmp_path):
    assert expire_tree(tmp_path / "nope", datetime.now(timezone.utc)) == (0, 0)


def test_sweep_temporary_leaves_reserved_dirs(store):
    temp = store.namespace_root(Namespace.TEMPORARY)
    old = write_file(temp / "scratch" / "old.log", age_seconds=100 * HOUR)
    fresh = write_file(temp / "new.log")
    staged = write_file(store.staging_root(Namespace.TEMPORARY) / "x.upload", age_seconds=100 * HOUR)

    assert sweep_temporary(store, timedelta(hours=72)) == 1

    assert not old.exists()
    assert not (temp / "scratch").exists()
    assert fresh.exists()
    assert staged.exists()
    assert store.trash_root(Namespace.TEMPORARY).is_dir()


def test_sweep_temporary_ignores_permanent(store):
    kept = write_file(store.namespace_root(Namespace.PERMANENT) / "old.txt", age_seconds=100 * HOUR)
    sweep_temporary(store, timedelta(hours=1))
    assert kept.exists()


def test_sweep_uploads_in_both_namespaces(store):
    stale = [
        write_file(store.staging_root(ns) / "stale.upload", age_seconds=7 * HOUR) for ns in Namespace
    ]
    active = write_file(store.staging_root(Namespace.PERMANENT) / "active.upload")

    assert sweep_uploads(store, timedelta(hours=6)) == 2

    assert not any(p.exists() for p in stale)
    assert active.exists()
    assert all(store.staging_root(ns).is_dir() for ns in Namespace)


def test_sweep_trash_uses_retention(store):
    root = store.namespace_root(Namespace.PERMANENT)
    write_file(root / "old.txt")
    write_file(root / "new.txt")
    old = store.delete(Namespace.PERMANENT, "old.txt")
    new = store.delete(Namespace.PERMANENT, "new.txt")

    container = store.trash_root(Namespace.PERMANENT) / old.id
    metadata = read_metadata(container)
    metadata.deleted_at = datetime.now(timezone.utc) - timedelta(days=31)
    write_metadata(container, metadata)

    assert sweep_trash(store, timedelta(days=30)) == 1
    assert [e.id for e in store.list_trash(Namespace.PERMANENT)] == [new.id]


def test_sweep_trash_continues_after_namespace_failure():
    store = MagicMock()
    store.cleanup_trash.side_effect = [OSError("boom"), 2]

    assert sweep_trash(store, timedelta(days=30)) == 2
    assert store.cleanup_trash.call_count == 2


def test_sweeper_loop_survives_failures_and_stops_on_cancel():
    calls = []

    def sweep():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("first pass fails")
        return 0

    async def run():
        task = asyncio.create_task(sweeper_loop("Test", timedelta(seconds=0.01), sweep))
        while len(calls) < 3:
            await asyncio.sleep(0.01)
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        return task

    task = asyncio.run(run())

    assert len(calls) >= 3
    assert task.cancelled()


def test_start_and_stop_sweepers(store):
    settings = MagicMock(
        sweep_interval_seconds=3600,
        trash_retention_days=30,
        temporary_retention_hours=72,
        upload_retention_hours=6,
    )

    async def run():
        tasks = start_sweepers(store, settings)
        await asyncio.sleep(0.05)
        await stop_sweepers(tasks)
        return tasks

    tasks = asyncio.run(run())

    assert [t.get_name() for t in tasks] == ["trash-sweeper", "temporary-sweeper", "upload-sweeper"]
    assert all(t.done() for t in tasks)
