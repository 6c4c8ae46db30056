"""
Dictionary-backed implementations of the storage service's ports.

They keep the same semantics as a database-backed store would: lookups of
unknown ids return None, and usage updates on unknown users are ignored
with a warning.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from ...core.storage.models import StoragePlan, User

logger = logging.getLogger(__name__)


@dataclass
class Room:
    id: str
    owner: str


class InMemoryUserStore:

    def __init__(self, users: Iterable[User] = ()) -> None:
        self._users: dict[str, User] = {user.id: user for user in users}

    def add(self, user: User) -> None:
        self._users[user.id] = user

    async def get_user_by_id(self, user_id: str) -> Optional[User]:
        return self._users.get(user_id)

    async def update_user_used_storage(self, user_id: str, used_storage_in_bytes: int) -> None:
        user = self._users.get(user_id)
        if user is None:
            logger.warning("Cannot update used storage of unknown user", extra={"user_id": user_id})
            return
        user.storage.used_storage_in_bytes = used_storage_in_bytes


class InMemoryStoragePlanStore:

    def __init__(self, plans: Iterable[StoragePlan] = ()) -> None:
        self._plans: dict[str, StoragePlan] = {plan.id: plan for plan in plans}

    def add(self, plan: StoragePlan) -> None:
        self._plans[plan.id] = plan

    async def get_storage_plan_by_id(self, plan_id: str) -> Optional[StoragePlan]:
        return self._plans.get(plan_id)


class InMemoryRoomStore:

    def __init__(self, rooms: Iterable[Room] = ()) -> None:
        self._rooms: dict[str, Room] = {room.id: room for room in rooms}

    def add(self, room: Room) -> None:
        self._rooms[room.id] = room

    async def get_room_ids_owned_by(self, user_id: str) -> list[str]:
        return [room.id for room in self._rooms.values() if room.owner == user_id]
