"""
Storage path rules.

Object keys are grouped into two storage locations:

- public:  media-library/...       (served to everyone, no quota)
- private: room-media/{room_id}/...  (counted against the room owner's plan)

Anything else is an unknown location and must be rejected by callers.
"""

import re
from typing import Callable, Optional
from uuid import uuid4

from slugify import slugify

from .models import StorageLocationType

PUBLIC_STORAGE_PATH_PATTERN = re.compile(r"^media-library(/.*)?$")
PRIVATE_STORAGE_PATH_PATTERN = re.compile(r"^room-media/([^/]+)(/.*)?$")

# Zero-byte object marking an otherwise empty "directory"
STORAGE_DIRECTORY_MARKER_NAME = "__DIRMARKER__"

# Prefix used in stored documents instead of the CDN host
CDN_URL_PREFIX = "cdn://"


def get_storage_location_type(path: str) -> StorageLocationType:
    """Classify a path prefix or object key."""
    if PUBLIC_STORAGE_PATH_PATTERN.match(path or ""):
        return StorageLocationType.PUBLIC
    if PRIVATE_STORAGE_PATH_PATTERN.match(path or ""):
        return StorageLocationType.PRIVATE
    return StorageLocationType.UNKNOWN


def get_private_storage_path(room_id: str) -> str:
    return f"room-media/{room_id}"


def get_room_id_from_private_storage_path(path: str) -> Optional[str]:
    match = PRIVATE_STORAGE_PATH_PATTERN.match(path or "")
    return match.group(1) if match else None


def join_path(*parts: Optional[str]) -> str:
    """Join key segments with single slashes, dropping empty segments."""
    segments = []
    for part in parts:
        if not part:
            continue
        segments.extend(seg for seg in part.replace("\\", "/").split("/") if seg)
    return "/".join(segments)


def split_extension(file_name: str) -> tuple[str, str]:
    """
    Split a file name into base name and extension (with the dot).

    Leading dots are part of the base name, so '.env' has no extension.
    """
    index = file_name.rfind(".")
    if index <= 0:
        return file_name, ""
    return file_name[:index], file_name[index:]


def create_unique_id() -> str:
    return uuid4().hex


def compose_unique_file_name(
    file_name: str,
    prefix: Optional[str] = None,
    generate_id: Callable[[], str] = create_unique_id,
) -> str:
    """
    Build a collision-resistant object key for an uploaded file.

    'Hello World 123.MP3' becomes 'hello-world-123-<id>.mp3'. When the
    base name has nothing left after slugifying, only the id is used.
    """
    base_name, extension = split_extension(file_name)
    unique_name = "-".join(part for part in (slugify(base_name), generate_id()) if part)
    unique_name = f"{unique_name}{extension.lower()}"

    if prefix:
        return join_path(prefix, unique_name)
    return unique_name
