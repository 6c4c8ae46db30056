"""
Storage quota service.

Business rules on top of the CDN facade:
- Uploads go to a public or a private (per-room) location; anything else
  is rejected before touching storage
- Private uploads must fit into the uploading user's storage plan
- After a private upload or delete, the user's used storage is recounted
  from scratch by listing the media of every room the user owns

Usage is always recounted, never incremented, so objects added or removed
elsewhere are picked up on the next upload or delete. The cost is one
listing per owned room.

Concurrent uploads by the same user are not serialized here; the last
recount to finish wins.
"""

import asyncio
import logging
from typing import Optional
from urllib.parse import quote

from .errors import (
    InvalidStoragePathError,
    StoragePlanNotFoundError,
    StoragePlanRequiredError,
    StorageQuotaExceededError,
    StorageNotFoundError,
)
from .models import (
    CommonPrefix,
    DeleteResult,
    ListedItem,
    StorageFileView,
    StorageLocationType,
    StorageObject,
    UploadFile,
    UploadResult,
    User,
)
from .paths import (
    CDN_URL_PREFIX,
    STORAGE_DIRECTORY_MARKER_NAME,
    compose_unique_file_name,
    get_private_storage_path,
    get_storage_location_type,
    join_path,
)
from .ports import ObjectStore, RoomStore, StoragePlanStore, UserStore

logger = logging.getLogger(__name__)


class StorageService:
    """
    Enforces storage plans and keeps users' recorded usage accurate.

    All collaborators are injected, so tests can hand in in-memory stores
    and a mock-backed CDN.
    """

    def __init__(
        self,
        cdn: ObjectStore,
        user_store: UserStore,
        storage_plan_store: StoragePlanStore,
        room_store: RoomStore,
    ) -> None:
        self._cdn = cdn
        self._user_store = user_store
        self._storage_plan_store = storage_plan_store
        self._room_store = room_store

    # -----------------------------------------------------------------------
    # Uploads
    # -----------------------------------------------------------------------

    async def upload_files(
        self,
        prefix: str,
        files: list[UploadFile],
        user: User,
    ) -> UploadResult:
        """
        Upload staged files below `prefix`.

        Each file gets a collision-resistant name derived from its
        original name. Quota checks happen before anything is uploaded.

        Raises:
            InvalidStoragePathError: prefix is neither public nor private
            StoragePlanRequiredError: private upload by a user without a plan
            StorageQuotaExceededError: files don't fit into the remaining plan
        """
        location_type = get_storage_location_type(prefix)

        if location_type == StorageLocationType.UNKNOWN:
            raise InvalidStoragePathError(prefix)

        if location_type == StorageLocationType.PUBLIC:
            uploaded_files = await self._upload_files(prefix, files)
            return UploadResult(uploaded_files=uploaded_files)

        if not user.storage.plan:
            raise StoragePlanRequiredError()

        storage_plan = await self._storage_plan_store.get_storage_plan_by_id(user.storage.plan)
        if storage_plan is None:
            raise StoragePlanNotFoundError(user.storage.plan)

        required_bytes = sum(file.size for file in files)
        available_bytes = storage_plan.max_size_in_bytes - user.storage.used_storage_in_bytes

        if available_bytes < required_bytes:
            logger.info(
                "Upload rejected, storage plan exhausted",
                extra={
                    "user_id": user.id,
                    "plan_id": storage_plan.id,
                    "available_bytes": available_bytes,
                    "required_bytes": required_bytes,
                }
            )
            raise StorageQuotaExceededError(available_bytes, required_bytes)

        uploaded_files = await self._upload_files(prefix, files)
        used_bytes = await self.update_user_used_bytes(user.id)
        user.storage.used_storage_in_bytes = used_bytes

        return UploadResult(uploaded_files=uploaded_files, used_storage_in_bytes=used_bytes)

    async def _upload_files(self, prefix: str, files: list[UploadFile]) -> list[str]:
        object_names = [compose_unique_file_name(file.original_name, prefix) for file in files]

        await asyncio.gather(*(
            self._cdn.upload_object(object_name, file.path, {})
            for object_name, file in zip(object_names, files)
        ))

        logger.info(
            "Uploaded files",
            extra={"prefix": prefix, "count": len(files)}
        )

        return object_names

    async def create_directory(self, parent_path: str, name: str) -> str:
        """Create an empty directory by writing a marker object into it."""
        if get_storage_location_type(parent_path) == StorageLocationType.UNKNOWN:
            raise InvalidStoragePathError(parent_path)

        marker_name = join_path(parent_path, name, STORAGE_DIRECTORY_MARKER_NAME)
        await self._cdn.upload_empty_object(marker_name)
        return join_path(parent_path, name)

    # -----------------------------------------------------------------------
    # Deletion
    # -----------------------------------------------------------------------

    async def delete_object(self, prefix: str, object_name: str, user: User) -> DeleteResult:
        """
        Delete a single object and recount usage if it was private.

        `user` is the user whose storage the object counts against.
        """
        if get_storage_location_type(prefix) == StorageLocationType.UNKNOWN:
            raise InvalidStoragePathError(prefix)

        object_path = join_path(prefix, object_name)
        await self._cdn.delete_objects([object_path])

        logger.info(
            "Deleted object",
            extra={"object_name": object_path, "user_id": user.id}
        )

        if get_storage_location_type(prefix) != StorageLocationType.PRIVATE:
            return DeleteResult()

        used_bytes = await self.update_user_used_bytes(user.id)
        user.storage.used_storage_in_bytes = used_bytes
        return DeleteResult(used_storage_in_bytes=used_bytes)

    async def delete_room_media(self, room_id: str, room_owner_id: str) -> DeleteResult:
        """
        Delete everything stored for a room, directory markers included.

        The owner's usage is recounted only if something was deleted.
        """
        items = await self._cdn.list_objects(prefix=f"{get_private_storage_path(room_id)}/", recursive=True)
        object_names = [item.name for item in items if isinstance(item, StorageObject)]
        if not object_names:
            return DeleteResult(used_storage_in_bytes=0)

        await self._cdn.delete_objects(object_names)

        logger.info(
            "Deleted room media",
            extra={"room_id": room_id, "count": len(object_names)}
        )

        used_bytes = await self.update_user_used_bytes(room_owner_id)
        return DeleteResult(used_storage_in_bytes=used_bytes)

    # -----------------------------------------------------------------------
    # Listing
    # -----------------------------------------------------------------------

    async def list_objects(self, prefix: str, recursive: bool = False) -> list[ListedItem]:
        return await self._cdn.list_objects(prefix=prefix, recursive=recursive)

    async def get_objects(
        self,
        parent_path: str,
        recursive: bool = False,
        include_empty_objects: bool = False,
        ignore_non_existing_path: bool = False,
    ) -> list[StorageFileView]:
        """
        List objects below `parent_path` as browser-facing views.

        Directory markers are hidden unless `include_empty_objects` is set.
        Results are de-duplicated and sorted by display name.

        Raises:
            StorageNotFoundError: nothing is stored below the path and
                `ignore_non_existing_path` is False
        """
        normalized_path = join_path(parent_path)
        prefix = f"{normalized_path}/" if normalized_path else ""
        items = await self._cdn.list_objects(prefix=prefix, recursive=recursive)

        if not ignore_non_existing_path and not items:
            raise StorageNotFoundError(parent_path)

        views: dict[str, StorageFileView] = {}
        for item in items:
            view = self._to_view(item)
            if view is None:
                continue
            if not include_empty_objects and view.display_name == STORAGE_DIRECTORY_MARKER_NAME:
                continue
            views.setdefault(view.portable_url, view)

        return sorted(views.values(), key=lambda view: view.display_name)

    def _to_view(self, item: ListedItem) -> Optional[StorageFileView]:
        if isinstance(item, CommonPrefix):
            path, last_modified = item.prefix, None
        else:
            path, last_modified = item.name, item.last_modified

        segments = [seg for seg in path.split("/") if seg]
        if not segments:
            return None

        encoded_segments = [quote(seg, safe="") for seg in segments]

        return StorageFileView(
            display_name=segments[-1],
            parent_path="/".join(segments[:-1]),
            path="/".join(segments),
            url="/".join([self._cdn.root_url.rstrip("/"), *encoded_segments]),
            portable_url=f"{CDN_URL_PREFIX}{'/'.join(encoded_segments)}",
            created_on=last_modified,
            updated_on=last_modified,
            size=item.size,
            is_directory=isinstance(item, CommonPrefix),
        )

    # -----------------------------------------------------------------------
    # Usage accounting
    # -----------------------------------------------------------------------

    async def get_private_storage_paths(self, user_id: str) -> list[str]:
        room_ids = await self._room_store.get_room_ids_owned_by(user_id)
        return [get_private_storage_path(room_id) for room_id in room_ids]

    async def calculate_user_used_bytes(self, user_id: str) -> int:
        """Sum object sizes across every private location the user owns."""
        total = 0
        for storage_path in await self.get_private_storage_paths(user_id):
            objects = await self._cdn.list_objects(prefix=f"{storage_path}/", recursive=True)
            total += sum(obj.size for obj in objects if isinstance(obj, StorageObject))
        return total

    async def update_user_used_bytes(self, user_id: str) -> int:
        """Recount a user's used storage and persist the new total."""
        used_bytes = await self.calculate_user_used_bytes(user_id)
        await self._user_store.update_user_used_storage(user_id, used_bytes)

        logger.info(
            "Updated used storage",
            extra={"user_id": user_id, "used_bytes": used_bytes}
        )

        return used_bytes
