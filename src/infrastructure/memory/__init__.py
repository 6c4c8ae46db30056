"""
In-memory persistence for local development and tests.
"""

from .stores import InMemoryRoomStore, InMemoryStoragePlanStore, InMemoryUserStore, Room

__all__ = [
    "InMemoryRoomStore",
    "InMemoryStoragePlanStore",
    "InMemoryUserStore",
    "Room",
]
