"""Resource listing, trash and namespace models."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class Namespace(str, Enum):
    PERMANENT = "permanent"
    TEMPORARY = "temporary"


class SortField(str, Enum):
    NAME = "name"
    MODIFIED_TIME = "time"
    SIZE = "size"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


class ResourceEntry(BaseModel):
    name: str
    relative_path: str
    is_directory: bool
    size_bytes: int = 0
    last_modified: datetime


class TrashEntry(BaseModel):
    id: str
    name: str
    original_path: str
    is_directory: bool
    deleted_at: datetime
    size_bytes: int = 0


class TrashMetadata(BaseModel):
    """Sidecar document stored as metadata.json inside each trash container."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    original_path: str = Field(alias="originalPath")
    original_name: str = Field(alias="originalName")
    is_directory: bool = Field(alias="isDirectory")
    deleted_at: datetime = Field(alias="deletedAt")
    size_bytes: int = Field(default=0, alias="sizeBytes")

    def to_entry(self) -> TrashEntry:
        return TrashEntry(
            id=self.id,
            name=self.original_name,
            original_path=self.original_path,
            is_directory=self.is_directory,
            deleted_at=self.deleted_at,
            size_bytes=self.size_bytes,
        )
