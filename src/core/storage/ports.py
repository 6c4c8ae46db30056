"""
Interfaces the storage service depends on.

The service never talks to a database or an SDK directly. Persistence
lives in whatever implements these protocols (MongoDB in production,
in-memory stores in tests and local development), and object access goes
through the CDN facade.
"""

from typing import Optional, Protocol

from .models import ListedItem, StoragePlan, UploadedObject


class ObjectStore(Protocol):
    """The part of the CDN facade the storage service needs."""

    @property
    def root_url(self) -> str:
        ...

    async def upload_object(
        self,
        name: str,
        file_path: str,
        metadata: Optional[dict[str, str]] = None,
    ) -> UploadedObject:
        ...

    async def upload_empty_object(self, name: str) -> UploadedObject:
        ...

    async def list_objects(self, prefix: str = "", recursive: bool = False) -> list[ListedItem]:
        ...

    async def delete_objects(self, names: list[str]) -> None:
        ...


class UserStore(Protocol):

    async def update_user_used_storage(self, user_id: str, used_storage_in_bytes: int) -> None:
        """Persist a freshly recomputed usage total."""
        ...


class StoragePlanStore(Protocol):

    async def get_storage_plan_by_id(self, plan_id: str) -> Optional[StoragePlan]:
        ...


class RoomStore(Protocol):

    async def get_room_ids_owned_by(self, user_id: str) -> list[str]:
        """Ids of all rooms whose owner is `user_id`, whatever their access."""
        ...
