#!/usr/bin/env python3
"""
Operator commands for the CDN bucket.

Usage:
    python scripts/storage_admin.py ensure-bucket [--public-read]
    python scripts/storage_admin.py list [--prefix media-library/] [--recursive]
    python scripts/storage_admin.py delete-prefix room-media/abc123/

Requires:
    - .env file with STORAGE_* settings (or STORAGE_MOCK_MODE=true)
"""

import asyncio
import logging
import sys
from pathlib import Path

# Add project root to path so we can import our modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

from src.config import get_settings
from src.core.storage.models import CommonPrefix
from src.infrastructure.storage import BatchDeleteError, Cdn


async def ensure_bucket(cdn: Cdn, public_read: bool) -> int:
    created = await cdn.ensure_bucket(public_read=public_read)
    print(f"Bucket {cdn.bucket_name}: {'created' if created else 'already exists'}")
    if public_read:
        print("[OK] Public read policy applied")
    return 0


async def list_objects(cdn: Cdn, prefix: str, recursive: bool) -> int:
    items = await cdn.list_objects(prefix=prefix, recursive=recursive)
    for item in items:
        if isinstance(item, CommonPrefix):
            print(f"{'DIR':>12}  {item.prefix}")
        else:
            print(f"{item.size:>12}  {item.name}")
    print(f"\nTotal: {len(items)} entries")
    return 0


async def delete_prefix(cdn: Cdn, prefix: str) -> int:
    if not prefix.strip("/"):
        print("ERROR: Refusing to delete the whole bucket")
        return 1

    items = await cdn.list_objects(prefix=prefix, recursive=True)
    object_names = [item.name for item in items if not isinstance(item, CommonPrefix)]
    if not object_names:
        print(f"Nothing stored below {prefix}")
        return 0

    try:
        await cdn.delete_objects(object_names)
    except BatchDeleteError as exc:
        print(f"[ERR] {len(exc.failed_object_names)} of {len(object_names)} objects could not be deleted:")
        for name in exc.failed_object_names:
            print(f"  {name}")
        return 1

    print(f"[OK] Deleted {len(object_names)} objects below {prefix}")
    return 0


async def run(args) -> int:
    settings = get_settings()

    missing = settings.validate_required_fields()
    if missing:
        print(f"ERROR: Missing settings: {', '.join(missing)}")
        return 1

    cdn = Cdn(settings.cdn_config())
    try:
        if args.command == "ensure-bucket":
            return await ensure_bucket(cdn, args.public_read)
        if args.command == "list":
            return await list_objects(cdn, args.prefix, args.recursive)
        return await delete_prefix(cdn, args.prefix)
    finally:
        await cdn.dispose()


def main():
    import argparse

    parser = argparse.ArgumentParser(description="Manage the CDN bucket")
    subparsers = parser.add_subparsers(dest="command", required=True)

    ensure_parser = subparsers.add_parser("ensure-bucket", help="Create the bucket if missing")
    ensure_parser.add_argument("--public-read", action="store_true", help="Allow anonymous reads")

    list_parser = subparsers.add_parser("list", help="List objects")
    list_parser.add_argument("--prefix", default="", help="Key prefix, e.g. media-library/")
    list_parser.add_argument("--recursive", action="store_true", help="Don't group by '/'")

    delete_parser = subparsers.add_parser("delete-prefix", help="Delete every object below a prefix")
    delete_parser.add_argument("prefix", help="Key prefix, e.g. room-media/abc123/")

    args = parser.parse_args()

    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=get_settings().log_level.upper(),
    )

    sys.exit(asyncio.run(run(args)))


if __name__ == '__main__':
    main()
