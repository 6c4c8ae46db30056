"""
Storage rules: path classification, unique naming and quota enforcement.
"""

from .errors import (
    InvalidStoragePathError,
    StorageNotFoundError,
    StoragePlanNotFoundError,
    StoragePlanRequiredError,
    StorageQuotaExceededError,
    StorageServiceError,
)
from .models import (
    BucketInfo,
    CommonPrefix,
    DeleteResult,
    ListedItem,
    StorageFileView,
    StorageLocationType,
    StorageObject,
    StoragePlan,
    UploadedObject,
    UploadFile,
    UploadResult,
    User,
    UserStorage,
)
from .service import StorageService

__all__ = [
    "InvalidStoragePathError",
    "StorageNotFoundError",
    "StoragePlanNotFoundError",
    "StoragePlanRequiredError",
    "StorageQuotaExceededError",
    "StorageServiceError",
    "BucketInfo",
    "CommonPrefix",
    "DeleteResult",
    "ListedItem",
    "StorageFileView",
    "StorageLocationType",
    "StorageObject",
    "StoragePlan",
    "UploadedObject",
    "UploadFile",
    "UploadResult",
    "User",
    "UserStorage",
    "StorageService",
]
