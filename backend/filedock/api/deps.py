from functools import lru_cache

from filedock.core.config import settings
from filedock.services.resource_store import ResourceStore


@lru_cache
def get_store() -> ResourceStore:
    return ResourceStore.from_settings(settings)
