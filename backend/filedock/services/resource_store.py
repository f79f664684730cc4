"""Resource store - listing, uploads, moves, archives and trash over two sandboxed namespaces.

Every operation goes straight to the filesystem; there is no index or cache.
Paths handed in by callers are always relative to a namespace root and are
resolved through the sandbox before anything is touched.
"""

import io
import logging
import os
import shutil
import uuid
from collections.abc import Iterable
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import BinaryIO, Protocol

from filedock.core.config import Settings
from filedock.core.errors import (
    AlreadyExistsError,
    IllegalOperationError,
    InvalidArgumentError,
    NotFoundError,
    PathInvalidError,
    StorageIOError,
    UploadTooLargeError,
)
from filedock.core.sandbox import (
    resolve_namespace_root,
    resolve_sandboxed_entry,
    resolve_sandboxed_path,
    to_relative,
    validate_name,
)
from filedock.models.resource import (
    Namespace,
    ResourceEntry,
    SortDirection,
    SortField,
    TrashEntry,
    TrashMetadata,
)
from filedock.services.trash_metadata import (
    TrashMetadataError,
    content_path,
    read_metadata,
    write_metadata,
)

logger = logging.getLogger(__name__)

TRASH_DIR_NAME = ".trash"
UPLOAD_DIR_NAME = ".uploading"
RESERVED_NAMES = frozenset({TRASH_DIR_NAME, UPLOAD_DIR_NAME})

UPLOAD_CHUNK_SIZE = 81920


class IncomingFile(Protocol):
    """What save_upload needs from an upload; FastAPI's UploadFile fits."""

    filename: str | None
    size: int | None

    async def read(self, size: int = -1) -> bytes: ...


@contextmanager
def _io_guard(action: str):
    try:
        yield
    except OSError as e:
        logger.error(f"{action} failed: {e}")
        raise StorageIOError(f"{action} failed") from e


def _utc(timestamp: float) -> datetime:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


def _exists(path: Path) -> bool:
    return path.exists() or path.is_symlink()


def _measure(path: Path) -> int:
    """Size of a file, or the recursive size of a directory. Unreadable members count as zero."""
    if path.is_symlink() or not path.is_dir():
        try:
            return path.lstat().st_size
        except OSError:
            return 0

    total = 0
    for dirpath, _, filenames in os.walk(path):
        for filename in filenames:
            try:
                total += os.lstat(os.path.join(dirpath, filename)).st_size
            except OSError:
                continue
    return total


def _available_file_name(directory: Path, file_name: str) -> str:
    """file_name, or 'stem (N).ext' with the first free N."""
    candidate = file_name
    stem, suffix = Path(file_name).stem, Path(file_name).suffix
    counter = 1
    while _exists(directory / candidate):
        candidate = f"{stem} ({counter}){suffix}"
        counter += 1
    return candidate


def close_streams(items: Iterable[tuple[str, BinaryIO]]) -> None:
    for _, stream in items:
        try:
            stream.close()
        except Exception:
            logger.warning("Failed to close archive stream", exc_info=True)


class ResourceStore:
    def __init__(
        self,
        root: Path,
        permanent_subdir: str = "permanent",
        temporary_subdir: str = "temporary",
        upload_limit_bytes: int = 1024 * 1024 * 1024,
    ):
        self.root = Path(root).resolve()
        self.upload_limit_bytes = upload_limit_bytes
        if permanent_subdir == temporary_subdir:
            raise ValueError("Permanent and temporary namespaces need distinct subdirectories")
        self._roots = {
            Namespace.PERMANENT: resolve_namespace_root(self.root, permanent_subdir),
            Namespace.TEMPORARY: resolve_namespace_root(self.root, temporary_subdir),
        }

    @classmethod
    def from_settings(cls, settings: Settings) -> "ResourceStore":
        return cls(
            root=settings.root_dir,
            permanent_subdir=settings.permanent_subdir,
            temporary_subdir=settings.temporary_subdir,
            upload_limit_bytes=settings.upload_limit_bytes,
        )

    # Roots

    def namespace_root(self, namespace: Namespace) -> Path:
        return self._roots[Namespace(namespace)]

    def trash_root(self, namespace: Namespace) -> Path:
        return self.namespace_root(namespace) / TRASH_DIR_NAME

    def staging_root(self, namespace: Namespace) -> Path:
        return self.namespace_root(namespace) / UPLOAD_DIR_NAME

    def ensure_roots(self) -> None:
        for namespace in Namespace:
            with _io_guard(f"Creating roots for {namespace.value}"):
                self.trash_root(namespace).mkdir(parents=True, exist_ok=True)
                self.staging_root(namespace).mkdir(parents=True, exist_ok=True)
        logger.info(
            "Ensured resource roots. Permanent: %s; Temporary: %s",
            self.namespace_root(Namespace.PERMANENT),
            self.namespace_root(Namespace.TEMPORARY),
        )

    def _resolve(self, namespace: Namespace, relative_path: str | None) -> Path:
        return resolve_sandboxed_path(self.namespace_root(namespace), relative_path)

    def _resolve_entry(self, namespace: Namespace, relative_path: str | None) -> Path:
        """Path of the entry itself; a symlink stays a symlink."""
        return resolve_sandboxed_entry(self.namespace_root(namespace), relative_path)

    def _is_reserved(self, namespace: Namespace, full_path: Path) -> bool:
        return any(
            full_path.is_relative_to(reserved)
            for reserved in (self.trash_root(namespace), self.staging_root(namespace))
        )

    def _guard_reserved(self, namespace: Namespace, full_path: Path) -> None:
        if self._is_reserved(namespace, full_path):
            raise IllegalOperationError("Reserved directories cannot be accessed directly")

    def _require_values(self, values: Iterable[str] | None, label: str = "path") -> list[str]:
        items = [v for v in (values or []) if v is not None]
        if not items:
            raise InvalidArgumentError(f"No {label}s supplied")
        if any(not v.strip() for v in items):
            raise InvalidArgumentError(f"Empty {label} in request")
        return [v.strip() for v in items]

    def _entry(self, namespace: Namespace, full_path: Path) -> ResourceEntry:
        # A dangling link is still an entry the caller can rename or delete
        stat = full_path.stat() if full_path.exists() else full_path.lstat()
        is_dir = full_path.is_dir()
        return ResourceEntry(
            name=full_path.name,
            relative_path=to_relative(self.namespace_root(namespace), full_path),
            is_directory=is_dir,
            size_bytes=0 if is_dir else stat.st_size,
            last_modified=_utc(stat.st_mtime),
        )

    # Listing

    def list_directory(
        self,
        namespace: Namespace,
        relative_path: str | None = None,
        name_filter: str | None = None,
        sort_field: SortField = SortField.NAME,
        sort_direction: SortDirection = SortDirection.ASC,
    ) -> list[ResourceEntry]:
        """Direct children of a directory, filtered then sorted."""
        ns_root = self.namespace_root(namespace)
        dir_path = self._resolve(namespace, relative_path)
        self._guard_reserved(namespace, dir_path)

        if not dir_path.is_dir():
            raise NotFoundError(f"Directory not found: {relative_path or ''}")

        entries: list[ResourceEntry] = []
        for item in dir_path.iterdir():
            if dir_path == ns_root and item.name in RESERVED_NAMES:
                continue
            try:
                entries.append(self._entry(namespace, item))
            except OSError:
                # Entry removed mid-listing
                logger.debug("Skipping unreadable entry %s", item)

        if name_filter and name_filter.strip():
            needle = name_filter.casefold()
            entries = [e for e in entries if needle in e.name.casefold()]

        sort_field = SortField(sort_field)
        if sort_field == SortField.MODIFIED_TIME:
            key = lambda e: e.last_modified  # noqa: E731
        elif sort_field == SortField.SIZE:
            key = lambda e: e.size_bytes  # noqa: E731
        else:
            key = lambda e: e.name.casefold()  # noqa: E731

        return sorted(entries, key=key, reverse=SortDirection(sort_direction) == SortDirection.DESC)

    # Reading

    def open_read(self, namespace: Namespace, relative_path: str) -> BinaryIO:
        """Open a file for reading. The caller must close the returned stream."""
        if not relative_path or not relative_path.strip():
            raise InvalidArgumentError("Path is required")

        full_path = self._resolve(namespace, relative_path)
        self._guard_reserved(namespace, full_path)

        if full_path.is_dir():
            raise IllegalOperationError("Cannot open a directory for reading")
        if not full_path.is_file():
            raise NotFoundError(f"File not found: {relative_path}")

        logger.info("Opening file stream for %s", full_path)
        with _io_guard(f"Opening {relative_path}"):
            return full_path.open("rb")

    # Uploads

    async def save_upload(
        self,
        namespace: Namespace,
        relative_path: str | None,
        incoming: IncomingFile,
    ) -> ResourceEntry:
        """Stage an upload under .uploading, then rename it into the target directory.

        Cancellation or any failure removes the staging file and re-raises; the
        target directory never sees a partial file.
        """
        declared = incoming.size
        if declared is not None and declared > self.upload_limit_bytes:
            raise UploadTooLargeError(self.upload_limit_bytes)

        file_name = PurePosixPath((incoming.filename or "").replace("\\", "/")).name
        validate_name(file_name, "File name")

        target_dir = self._resolve(namespace, relative_path)
        self._guard_reserved(namespace, target_dir)
        if _exists(target_dir) and not target_dir.is_dir():
            raise IllegalOperationError("Upload target is not a directory")

        staging_root = self.staging_root(namespace)
        with _io_guard("Preparing upload directories"):
            staging_root.mkdir(parents=True, exist_ok=True)
            target_dir.mkdir(parents=True, exist_ok=True)

        staging_path = staging_root / f"{uuid.uuid4().hex}.upload"
        try:
            written = 0
            with open(staging_path, "xb") as out:
                while chunk := await incoming.read(UPLOAD_CHUNK_SIZE):
                    written += len(chunk)
                    if written > self.upload_limit_bytes:
                        raise UploadTooLargeError(self.upload_limit_bytes)
                    out.write(chunk)

            if declared is not None and written != declared:
                raise StorageIOError(f"Incomplete upload: received {written} of {declared} bytes")

            final_name = _available_file_name(target_dir, file_name)
            final_path = target_dir / final_name
            staging_path.replace(final_path)
        except BaseException as e:
            self._discard_staging(staging_path)
            if isinstance(e, OSError):
                logger.error(f"Upload of {file_name} failed: {e}")
                raise StorageIOError(f"Upload of {file_name} failed") from e
            raise

        logger.info("Saved upload %s (%d bytes) to %s", file_name, written, final_path)
        return self._entry(namespace, final_path)

    def _discard_staging(self, staging_path: Path) -> None:
        try:
            staging_path.unlink(missing_ok=True)
        except OSError:
            logger.warning("Failed to remove staging file %s", staging_path, exc_info=True)

    # Directory and name changes

    def create_directory(
        self, namespace: Namespace, base_relative_path: str | None, folder_name: str
    ) -> ResourceEntry:
        validate_name(folder_name, "Folder name")

        ns_root = self.namespace_root(namespace)
        base_dir = self._resolve(namespace, base_relative_path)
        target = self._resolve(namespace, to_relative(ns_root, base_dir / folder_name))
        self._guard_reserved(namespace, target)

        if _exists(target) and not target.is_dir():
            raise AlreadyExistsError(f"A file named '{folder_name}' already exists")

        with _io_guard(f"Creating directory {folder_name}"):
            target.mkdir(parents=True, exist_ok=True)
        logger.info("Created directory: %s", target)
        return self._entry(namespace, target)

    def rename(self, namespace: Namespace, relative_path: str, new_name: str) -> ResourceEntry:
        """Rename a file or directory within its own parent directory."""
        if not relative_path or not relative_path.strip():
            raise InvalidArgumentError("Path is required")
        validate_name(new_name, "New name")

        source = self._resolve_entry(namespace, relative_path)
        if source == self.namespace_root(namespace):
            raise IllegalOperationError("The namespace root cannot be renamed")
        self._guard_reserved(namespace, source)

        target = source.parent / new_name
        self._guard_reserved(namespace, target)

        if not _exists(source):
            raise NotFoundError(f"Path not found: {relative_path}")
        if new_name.casefold() == source.name.casefold():
            raise InvalidArgumentError("New name is the same as the current name")
        if _exists(target):
            raise AlreadyExistsError(f"'{new_name}' already exists")

        with _io_guard(f"Renaming {relative_path}"):
            source.rename(target)
        logger.info("Renamed %s -> %s", source, target)
        return self._entry(namespace, target)

    def move_many(
        self,
        namespace: Namespace,
        relative_paths: Iterable[str],
        target_directory: str | None,
    ) -> list[ResourceEntry]:
        """Move several items into one directory, all or nothing.

        Every source is validated before the first move so a bad item cannot
        leave the tree half moved.
        """
        paths = self._require_values(relative_paths)
        ns_root = self.namespace_root(namespace)

        target_dir = self._resolve(namespace, target_directory)
        self._guard_reserved(namespace, target_dir)
        if not target_dir.is_dir():
            raise NotFoundError("Target directory does not exist")

        planned: list[tuple[Path, Path]] = []
        claimed: set[Path] = set()
        for path in paths:
            source = self._resolve_entry(namespace, path)
            if source == ns_root:
                raise IllegalOperationError("The namespace root cannot be moved")
            self._guard_reserved(namespace, source)
            if not _exists(source):
                raise NotFoundError(f"Path not found: {path}")
            if source.is_dir() and target_dir.is_relative_to(source):
                raise IllegalOperationError("Cannot move a directory into itself or one of its subdirectories")

            destination = target_dir / source.name
            if _exists(destination) or destination in claimed:
                raise AlreadyExistsError(f"'{source.name}' already exists in the target directory")
            claimed.add(destination)
            planned.append((source, destination))

        moved: list[ResourceEntry] = []
        for source, destination in planned:
            with _io_guard(f"Moving {source.name}"):
                source.rename(destination)
            logger.info("Moved %s -> %s", source, destination)
            moved.append(self._entry(namespace, destination))
        return moved

    # Archives

    def open_streams_for_zip(
        self, namespace: Namespace, relative_paths: Iterable[str]
    ) -> list[tuple[str, BinaryIO]]:
        """Open one stream per file in the selection, directories walked recursively.

        Empty directories become zero-length 'name/' entries. Entry names are
        unique ignoring case. If anything fails, every stream opened so far is
        closed before the error propagates.
        """
        paths = self._require_values(relative_paths)
        ns_root = self.namespace_root(namespace)
        streams: list[tuple[str, BinaryIO]] = []
        seen: set[str] = set()

        def add_file(file_path: Path) -> None:
            entry_name = to_relative(ns_root, file_path)
            if entry_name.casefold() in seen:
                return
            seen.add(entry_name.casefold())
            with _io_guard(f"Opening {entry_name}"):
                streams.append((entry_name, file_path.open("rb")))

        def add_directory_marker(dir_path: Path) -> None:
            entry_name = to_relative(ns_root, dir_path) + "/"
            if entry_name.casefold() in seen:
                return
            seen.add(entry_name.casefold())
            streams.append((entry_name, io.BytesIO(b"")))

        def walk_error(error: OSError) -> None:
            logger.error(f"Reading {error.filename} for archive failed: {error}")
            raise StorageIOError("Reading a directory for the archive failed") from error

        try:
            for path in paths:
                full_path = self._resolve(namespace, path)
                if full_path == ns_root:
                    raise IllegalOperationError("The namespace root cannot be packaged directly")
                self._guard_reserved(namespace, full_path)

                if full_path.is_file():
                    add_file(full_path)
                elif full_path.is_dir():
                    for dirpath, dirnames, filenames in os.walk(full_path, onerror=walk_error):
                        dirnames.sort(key=str.casefold)
                        current = Path(dirpath)
                        if not dirnames and not filenames:
                            add_directory_marker(current)
                        for filename in sorted(filenames, key=str.casefold):
                            file_path = current / filename
                            resolved = file_path.resolve()
                            if not resolved.is_relative_to(ns_root) or self._is_reserved(namespace, resolved):
                                logger.warning("Skipping link that leaves the namespace: %s", file_path)
                                continue
                            if file_path.is_file():
                                add_file(file_path)
                else:
                    raise NotFoundError(f"Path not found: {path}")
        except BaseException:
            close_streams(streams)
            raise

        return streams

    # Trash

    def delete(self, namespace: Namespace, relative_path: str) -> TrashEntry:
        return self.move_to_trash(namespace, [relative_path])[0]

    def delete_many(self, namespace: Namespace, relative_paths: Iterable[str]) -> list[TrashEntry]:
        return self.move_to_trash(namespace, relative_paths)

    def move_to_trash(self, namespace: Namespace, relative_paths: Iterable[str]) -> list[TrashEntry]:
        """Soft-delete each path into its own trash container.

        Items are processed in order; the first failure stops the batch and
        leaves earlier items in the trash.
        """
        paths = self._require_values(relative_paths)
        ns_root = self.namespace_root(namespace)
        trash_root = self.trash_root(namespace)
        trashed: list[TrashEntry] = []

        for path in paths:
            full_path = self._resolve_entry(namespace, path)
            if full_path == ns_root:
                raise IllegalOperationError("The namespace root cannot be deleted")
            if full_path.is_relative_to(trash_root):
                raise IllegalOperationError("The trash directory cannot be deleted")
            self._guard_reserved(namespace, full_path)
            if not _exists(full_path):
                raise NotFoundError(f"Path not found: {path}")

            trashed.append(self._trash_one(namespace, full_path))

        return trashed

    def _trash_one(self, namespace: Namespace, full_path: Path) -> TrashEntry:
        entry_id = uuid.uuid4().hex
        container = self.trash_root(namespace) / entry_id
        metadata = TrashMetadata(
            id=entry_id,
            original_path=to_relative(self.namespace_root(namespace), full_path),
            original_name=full_path.name,
            is_directory=full_path.is_dir() and not full_path.is_symlink(),
            deleted_at=datetime.now(timezone.utc),
            size_bytes=_measure(full_path),
        )
        stored = content_path(container, full_path.name)

        with _io_guard(f"Moving {metadata.original_path} to trash"):
            container.mkdir(parents=True)
            try:
                full_path.rename(stored)
            except OSError:
                shutil.rmtree(container, ignore_errors=True)
                raise

            try:
                write_metadata(container, metadata)
            except OSError:
                # Without a sidecar the item could never be restored
                stored.rename(full_path)
                shutil.rmtree(container, ignore_errors=True)
                raise

        logger.info("Moved to trash: %s (id: %s, size: %d)", metadata.original_path, entry_id, metadata.size_bytes)
        return metadata.to_entry()

    def _trash_container(self, namespace: Namespace, entry_id: str) -> Path | None:
        """Container directory for an id, or None when the id cannot name one."""
        trash_root = self.trash_root(namespace)
        try:
            container = resolve_sandboxed_path(trash_root, entry_id)
        except PathInvalidError:
            return None
        if container.parent != trash_root:
            return None
        return container

    def list_trash(self, namespace: Namespace) -> list[TrashEntry]:
        """Trash entries, newest deletion first, then by name."""
        trash_root = self.trash_root(namespace)
        if not trash_root.is_dir():
            return []

        entries: list[TrashEntry] = []
        for container in trash_root.iterdir():
            if not container.is_dir():
                continue
            try:
                entries.append(read_metadata(container).to_entry())
            except TrashMetadataError as e:
                logger.warning("Skipping unreadable trash entry: %s", e)

        entries.sort(key=lambda e: e.name.casefold())
        entries.sort(key=lambda e: e.deleted_at, reverse=True)
        return entries

    def restore_from_trash(self, namespace: Namespace, entry_ids: Iterable[str]) -> list[ResourceEntry]:
        """Move trashed items back to where they were deleted from.

        The first id that cannot be restored stops the batch.
        """
        ids = self._require_values(entry_ids, "trash id")
        restored: list[ResourceEntry] = []

        for entry_id in ids:
            container = self._trash_container(namespace, entry_id)
            if container is None or not container.is_dir():
                raise NotFoundError(f"Trash entry not found: {entry_id}")

            try:
                metadata = read_metadata(container)
            except TrashMetadataError as e:
                raise StorageIOError(f"Trash entry {entry_id} cannot be read") from e

            target = self._resolve(namespace, metadata.original_path)
            self._guard_reserved(namespace, target)
            if target == self.namespace_root(namespace):
                raise IllegalOperationError(f"Trash entry {entry_id} has no usable original path")
            if _exists(target):
                raise AlreadyExistsError(f"'{metadata.original_path}' already exists")

            stored = content_path(container, metadata.original_name)
            if not _exists(stored):
                raise NotFoundError(f"Content of trash entry {entry_id} is missing")

            with _io_guard(f"Restoring {metadata.original_path}"):
                target.parent.mkdir(parents=True, exist_ok=True)
                stored.rename(target)
                shutil.rmtree(container)

            logger.info("Restored from trash: %s (id: %s)", metadata.original_path, entry_id)
            restored.append(self._entry(namespace, target))

        return restored

    def purge_trash(self, namespace: Namespace, entry_ids: Iterable[str]) -> int:
        """Permanently delete trash containers. Unknown ids are ignored."""
        purged = 0
        for entry_id in entry_ids or []:
            container = self._trash_container(namespace, (entry_id or "").strip())
            if container is None or not container.is_dir():
                continue
            with _io_guard(f"Purging trash entry {entry_id}"):
                shutil.rmtree(container)
            logger.info("Purged trash entry %s", entry_id)
            purged += 1
        return purged

    def cleanup_trash(self, namespace: Namespace, cutoff: datetime) -> int:
        """Purge entries deleted before cutoff. Unreadable entries are left alone."""
        if cutoff.tzinfo is None:
            cutoff = cutoff.replace(tzinfo=timezone.utc)
        trash_root = self.trash_root(namespace)
        if not trash_root.is_dir():
            return 0

        purged = 0
        for container in list(trash_root.iterdir()):
            if not container.is_dir():
                continue
            try:
                metadata = read_metadata(container)
            except TrashMetadataError as e:
                logger.warning("Skipping unreadable trash entry during cleanup: %s", e)
                continue

            if metadata.deleted_at >= cutoff:
                continue
            try:
                shutil.rmtree(container)
            except OSError:
                logger.exception("Failed to purge expired trash entry %s", container.name)
                continue
            logger.info("Purged expired trash entry %s (%s)", metadata.id, metadata.original_path)
            purged += 1

        return purged
