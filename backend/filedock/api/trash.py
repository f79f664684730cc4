"""REST API for the per-namespace trash."""

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from filedock.api.deps import get_store
from filedock.models.resource import Namespace
from filedock.services.resource_store import ResourceStore

router = APIRouter()


class TrashIds(BaseModel):
    ids: list[str]


@router.get("/{namespace}/")
async def list_trash(namespace: Namespace, store: ResourceStore = Depends(get_store)):
    return [e.model_dump(mode="json") for e in store.list_trash(namespace)]


@router.post("/{namespace}/restore")
async def restore_trash(namespace: Namespace, body: TrashIds, store: ResourceStore = Depends(get_store)):
    restored = store.restore_from_trash(namespace, body.ids)
    return {"status": "restored", "entries": [e.model_dump(mode="json") for e in restored]}


@router.post("/{namespace}/purge")
async def purge_trash(namespace: Namespace, body: TrashIds, store: ResourceStore = Depends(get_store)):
    purged = store.purge_trash(namespace, body.ids)
    return {"status": "purged", "count": purged}
