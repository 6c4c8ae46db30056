"""
Domain models for object storage and storage quotas.

These are plain dataclasses with no dependency on a storage SDK or a
database driver. Listings are recreated from the backend on every call
and never cached.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Union


class StorageLocationType(Enum):
    """Where an object key lives, derived from its path prefix."""
    PUBLIC = "public"
    PRIVATE = "private"
    UNKNOWN = "unknown"  # Always rejected, never treated as public


@dataclass(frozen=True)
class StorageObject:
    """A single remote object as reported by a listing."""
    name: str
    last_modified: Optional[datetime]
    etag: Optional[str]
    size: int


@dataclass(frozen=True)
class CommonPrefix:
    """
    A "folder" grouping returned by non-recursive listings.

    Size is always zero; the objects below it are not counted.
    """
    prefix: str
    size: int = 0


ListedItem = Union[StorageObject, CommonPrefix]


@dataclass(frozen=True)
class BucketInfo:
    name: str
    creation_date: Optional[datetime]


@dataclass(frozen=True)
class UploadedObject:
    """Result of a completed upload."""
    name: str
    etag: Optional[str]


@dataclass(frozen=True)
class StoragePlan:
    """
    A storage allowance that can be assigned to users.

    Managed elsewhere; read-only for the storage layer.
    """
    id: str
    name: str
    max_size_in_bytes: int


@dataclass
class UserStorage:
    """
    Per-user storage accounting.

    `used_storage_in_bytes` is only ever written after a successful
    upload or delete, from a full recount of the user's private locations.
    """
    plan: Optional[str] = None  # StoragePlan id
    used_storage_in_bytes: int = 0
    reminders: list = field(default_factory=list)


@dataclass
class User:
    id: str
    storage: UserStorage = field(default_factory=UserStorage)


@dataclass(frozen=True)
class UploadFile:
    """
    A file staged on local disk by the request layer, waiting for upload.

    `original_name` is what the client called the file; `path` is where
    the staged copy lives.
    """
    original_name: str
    path: str
    size: int


@dataclass(frozen=True)
class StorageFileView:
    """Browser-facing projection of a stored object."""
    display_name: str
    parent_path: str
    path: str
    url: str
    portable_url: str
    created_on: Optional[datetime]
    updated_on: Optional[datetime]
    size: int
    is_directory: bool = False


@dataclass
class UploadResult:
    """
    Outcome of an upload request.

    `uploaded_files` holds the final object key of each file, in request
    order, so files sharing an original name stay distinct.
    `used_storage_in_bytes` is None for public uploads, which do not
    count against a plan.
    """
    uploaded_files: list[str]
    used_storage_in_bytes: Optional[int] = None


@dataclass
class DeleteResult:
    used_storage_in_bytes: Optional[int] = None
