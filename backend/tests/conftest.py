"""Shared test fixtures for backend tests."""

import asyncio
import os
import time
from pathlib import Path
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from filedock.api.deps import get_store
from filedock.services.resource_store import ResourceStore


class FakeUpload:
    """Stands in for an UploadFile: a name, a declared size and an async read().

    fail_on / cancel_on name the read() call (1-based) that raises instead of
    returning data.
    """

    def __init__(self, filename, data=b"", size=-1, chunk=4, fail_on=None, cancel_on=None):
        self.filename = filename
        self.size = len(data) if size == -1 else size
        self._data = data
        self._chunk = chunk
        self._offset = 0
        self._reads = 0
        self._fail_on = fail_on
        self._cancel_on = cancel_on

    async def read(self, size=-1):
        self._reads += 1
        if self._reads == self._fail_on:
            raise ConnectionResetError("client went away")
        if self._reads == self._cancel_on:
            raise asyncio.CancelledError()
        step = self._chunk if size < 0 else min(size, self._chunk)
        data = self._data[self._offset:self._offset + step]
        self._offset += len(data)
        return data


def write_file(path: Path, content: bytes = b"data", age_seconds: float | None = None) -> Path:
    """Create a file (and its parents), optionally backdating its mtime."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    if age_seconds is not None:
        stamp = time.time() - age_seconds
        os.utime(path, (stamp, stamp))
    return path


@pytest.fixture
def store(tmp_path):
    """A store over a fresh root with both namespaces created."""
    s = ResourceStore(tmp_path / "resources", upload_limit_bytes=1024)
    s.ensure_roots()
    return s


@pytest.fixture
def client(store):
    """FastAPI TestClient bound to the temporary store, sweepers disabled."""
    with (
        patch("filedock.main.get_store", return_value=store),
        patch("filedock.main.start_sweepers", return_value=[]),
    ):
        from filedock.main import app

        app.dependency_overrides[get_store] = lambda: store

        with TestClient(app) as c:
            yield c

        app.dependency_overrides.clear()
