import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from filedock.api import resources, trash
from filedock.api.deps import get_store
from filedock.core.config import settings
from filedock.core.errors import (
    AlreadyExistsError,
    IllegalOperationError,
    InvalidArgumentError,
    NotFoundError,
    PathInvalidError,
    ResourceError,
    StorageIOError,
    UploadTooLargeError,
)
from filedock.services.scheduler.sweepers import start_sweepers, stop_sweepers

logger = logging.getLogger(__name__)

# Invalid and missing paths share one response so the root layout never leaks
_INVALID_OR_MISSING = "Path is invalid or does not exist"

# Checked in order, subclasses first
_ERROR_STATUS = [
    (PathInvalidError, status.HTTP_404_NOT_FOUND),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (AlreadyExistsError, status.HTTP_409_CONFLICT),
    (UploadTooLargeError, status.HTTP_413_REQUEST_ENTITY_TOO_LARGE),
    (InvalidArgumentError, status.HTTP_400_BAD_REQUEST),
    (IllegalOperationError, status.HTTP_400_BAD_REQUEST),
    (StorageIOError, status.HTTP_500_INTERNAL_SERVER_ERROR),
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Configure logging based on debug setting
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s" if settings.debug
        else "%(levelname)-8s %(name)s: %(message)s",
    )

    store = get_store()
    store.ensure_roots()
    logger.info(f"Resource root: {store.root}; upload limit: {store.upload_limit_bytes} bytes")

    # Start retention sweepers
    sweeper_tasks = start_sweepers(store, settings)

    yield

    await stop_sweepers(sweeper_tasks)


app = FastAPI(title=settings.app_name, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ResourceError)
async def resource_error_handler(request: Request, exc: ResourceError):
    status_code = next(
        (code for kind, code in _ERROR_STATUS if isinstance(exc, kind)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    if isinstance(exc, (PathInvalidError, NotFoundError)):
        detail = _INVALID_OR_MISSING
    elif status_code >= 500:
        detail = "Storage operation failed"
    else:
        detail = str(exc)

    logger.warning(f"{request.method} {request.url.path} failed: {type(exc).__name__}: {exc}")
    return JSONResponse(status_code=status_code, content={"detail": detail, "kind": type(exc).__name__})


app.include_router(resources.router, prefix="/api/resources", tags=["resources"])
app.include_router(trash.router, prefix="/api/trash", tags=["trash"])


@app.get("/api/health")
async def health():
    return {"status": "ok", "app": settings.app_name}


def run():
    import uvicorn

    uvicorn.run("filedock.main:app", host=settings.host, port=settings.port)
