"""REST API for browsing and managing namespace content."""

import logging
import mimetypes
import threading
from collections.abc import AsyncIterator, Iterator
from pathlib import PurePosixPath
from typing import BinaryIO
from urllib.parse import quote

from fastapi import APIRouter, Depends, UploadFile
from fastapi.responses import StreamingResponse
from pydantic import BaseModel
from starlette.background import BackgroundTask
from starlette.concurrency import iterate_in_threadpool

from filedock.api.deps import get_store
from filedock.models.resource import Namespace, SortDirection, SortField
from filedock.services.archive import CHUNK_SIZE, iter_zip
from filedock.services.resource_store import ResourceStore, close_streams

logger = logging.getLogger(__name__)

router = APIRouter()


class CreateDir(BaseModel):
    path: str = ""
    name: str


class RenameRequest(BaseModel):
    path: str
    new_name: str


class MoveRequest(BaseModel):
    paths: list[str]
    target: str = ""


class PathsRequest(BaseModel):
    paths: list[str]


def _parse_sort(sort: str | None) -> SortField:
    try:
        return SortField((sort or "").lower())
    except ValueError:
        return SortField.MODIFIED_TIME


def _parse_direction(direction: str | None) -> SortDirection:
    return SortDirection.ASC if (direction or "").lower() == "asc" else SortDirection.DESC


def _segments(path: str) -> list[str]:
    return [s for s in path.replace("\\", "/").split("/") if s]


def _breadcrumbs(path: str) -> list[dict]:
    crumbs = [{"name": "", "path": ""}]
    parts: list[str] = []
    for segment in _segments(path):
        parts.append(segment)
        crumbs.append({"name": segment, "path": "/".join(parts)})
    return crumbs


def _content_disposition(file_name: str) -> str:
    fallback = file_name.encode("ascii", "replace").decode().replace('"', "_")
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(file_name)}"


def _iter_file(stream: BinaryIO) -> Iterator[bytes]:
    try:
        while chunk := stream.read(CHUNK_SIZE):
            yield chunk
    finally:
        stream.close()


@router.get("/{namespace}/list")
async def list_resources(
    namespace: Namespace,
    path: str = "",
    q: str | None = None,
    sort: str | None = None,
    dir: str | None = None,
    store: ResourceStore = Depends(get_store),
):
    sort_field = _parse_sort(sort)
    direction = _parse_direction(dir)
    entries = store.list_directory(namespace, path, q, sort_field, direction)

    segments = _segments(path)
    files = [e for e in entries if not e.is_directory]
    return {
        "namespace": namespace.value,
        "path": "/".join(segments),
        "parent": "/".join(segments[:-1]) if segments else None,
        "sort": sort_field.value,
        "dir": direction.value,
        "breadcrumbs": _breadcrumbs(path),
        "stats": {
            "directories": len(entries) - len(files),
            "files": len(files),
            "total_size": sum(e.size_bytes for e in files),
        },
        "entries": [e.model_dump(mode="json") for e in entries],
    }


@router.post("/{namespace}/upload")
async def upload_resource(
    namespace: Namespace,
    file: UploadFile,
    path: str = "",
    store: ResourceStore = Depends(get_store),
):
    entry = await store.save_upload(namespace, path, file)
    return {"status": "uploaded", "entry": entry.model_dump(mode="json")}


@router.get("/{namespace}/download")
async def download_resource(namespace: Namespace, path: str, store: ResourceStore = Depends(get_store)):
    stream = store.open_read(namespace, path)
    file_name = PurePosixPath(path.replace("\\", "/")).name or "download"
    media_type = mimetypes.guess_type(file_name)[0] or "application/octet-stream"

    logger.info(f"Download requested. Namespace: {namespace.value}; Path: {path}")
    return StreamingResponse(
        _iter_file(stream),
        media_type=media_type,
        headers={"Content-Disposition": _content_disposition(file_name)},
    )


@router.post("/{namespace}/mkdir")
async def make_directory(namespace: Namespace, body: CreateDir, store: ResourceStore = Depends(get_store)):
    entry = store.create_directory(namespace, body.path, body.name)
    return {"status": "created", "entry": entry.model_dump(mode="json")}


@router.post("/{namespace}/rename")
async def rename_resource(namespace: Namespace, body: RenameRequest, store: ResourceStore = Depends(get_store)):
    entry = store.rename(namespace, body.path, body.new_name)
    return {"status": "renamed", "entry": entry.model_dump(mode="json")}


@router.post("/{namespace}/move")
async def move_resources(namespace: Namespace, body: MoveRequest, store: ResourceStore = Depends(get_store)):
    moved = store.move_many(namespace, body.paths, body.target)
    return {"status": "moved", "entries": [e.model_dump(mode="json") for e in moved]}


@router.post("/{namespace}/delete")
async def delete_resources(namespace: Namespace, body: PathsRequest, store: ResourceStore = Depends(get_store)):
    trashed = store.delete_many(namespace, body.paths)
    return {"status": "trashed", "entries": [e.model_dump(mode="json") for e in trashed]}


def _zip_chunks(items: list[tuple[str, BinaryIO]], cancel: threading.Event) -> Iterator[bytes]:
    try:
        yield from iter_zip(items, cancel=cancel)
        logger.info(f"Zip download finished. Entries: {len(items)}")
    finally:
        close_streams(items)


@router.post("/{namespace}/zip")
async def download_zip(namespace: Namespace, body: PathsRequest, store: ResourceStore = Depends(get_store)):
    # Validation errors surface here, before any response byte is sent
    items = store.open_streams_for_zip(namespace, body.paths)
    cancel = threading.Event()
    chunks = _zip_chunks(items, cancel)

    def release() -> None:
        # Runs once the response ends, also when the client disconnected mid-download
        cancel.set()
        if chunks.gi_running:
            # The worker thread sees the flag and closes the streams itself
            return
        chunks.close()
        close_streams(items)

    async def stream() -> AsyncIterator[bytes]:
        try:
            async for chunk in iterate_in_threadpool(chunks):
                yield chunk
        finally:
            release()

    logger.info(f"Zip download requested. Namespace: {namespace.value}; Entries: {len(items)}")
    return StreamingResponse(
        stream(),
        media_type="application/zip",
        headers={"Content-Disposition": 'attachment; filename="resources.zip"'},
        background=BackgroundTask(release),
    )
