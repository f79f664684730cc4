"""Read and write the per-container trash sidecar (metadata.json)."""

from datetime import timezone
from pathlib import Path

from pydantic import ValidationError

from filedock.models.resource import TrashMetadata

METADATA_FILE_NAME = "metadata.json"


class TrashMetadataError(Exception):
    """The sidecar of a trash container is missing, unreadable or inconsistent."""


def content_path(container: Path, original_name: str) -> Path:
    """Where the trashed item lives inside its container.

    An item literally named like the sidecar gets a suffix so the two never collide.
    """
    if original_name == METADATA_FILE_NAME:
        return container / f"{original_name}.content"
    return container / original_name


def write_metadata(container: Path, metadata: TrashMetadata) -> None:
    if metadata.id != container.name:
        raise TrashMetadataError(f"Metadata id {metadata.id!r} does not match container {container.name!r}")

    tmp_path = container / f"{METADATA_FILE_NAME}.tmp"
    tmp_path.write_text(metadata.model_dump_json(by_alias=True), encoding="utf-8")
    tmp_path.replace(container / METADATA_FILE_NAME)


def read_metadata(container: Path) -> TrashMetadata:
    path = container / METADATA_FILE_NAME
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise TrashMetadataError(f"Missing {METADATA_FILE_NAME} in trash container {container.name}")
    except (OSError, UnicodeDecodeError) as e:
        raise TrashMetadataError(f"Unreadable {METADATA_FILE_NAME} in trash container {container.name}: {e}")

    try:
        metadata = TrashMetadata.model_validate_json(raw)
    except ValidationError as e:
        raise TrashMetadataError(f"Corrupt {METADATA_FILE_NAME} in trash container {container.name}: {e}")

    if metadata.id != container.name:
        raise TrashMetadataError(f"Trash container {container.name} holds metadata for {metadata.id}")

    # Naive timestamps written by hand are taken as UTC
    if metadata.deleted_at.tzinfo is None:
        metadata.deleted_at = metadata.deleted_at.replace(tzinfo=timezone.utc)

    return metadata
