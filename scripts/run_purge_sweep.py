"""Run one trash purge sweep against a filekeep database.

Items whose retention window has passed are flipped to
``permanently_deleted`` and, with ``--blob-root``, their content blobs
are removed.  Each item's deadline was fixed when it was soft-deleted;
the sweep only compares it to the current time.

Usage:
    uv run python scripts/run_purge_sweep.py --db filekeep.db --blob-root ./blobs
    uv run python scripts/run_purge_sweep.py --url postgresql+asyncpg://localhost/filekeep --dry-run
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from sqlalchemy.ext.asyncio import create_async_engine

from filekeep import FileLifecycleEngine, LifecycleConfig, LocalBlobStore
from filekeep.utils import ensure_aware, utcnow


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--db", type=Path, help="SQLite database file")
    target.add_argument("--url", help="SQLAlchemy async database URL")
    parser.add_argument("--blob-root", type=Path, help="LocalBlobStore root directory")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List expired trash items without purging them",
    )
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser.parse_args(argv)


async def run(args: argparse.Namespace) -> int:
    url = args.url or f"sqlite+aiosqlite:///{args.db}"
    sql_engine = create_async_engine(url, echo=False)
    blobs = LocalBlobStore(args.blob_root) if args.blob_root else None
    config = LifecycleConfig(release_blobs=blobs is not None)

    engine = await FileLifecycleEngine.from_engine(sql_engine, blobs, config=config)
    try:
        if args.dry_run:
            trash = await engine.list_trash()
            now = utcnow()
            expired = [
                e for e in trash.entries
                if e.scheduled_deletion_at is not None and ensure_aware(e.scheduled_deletion_at) < now
            ]
            print(f"{len(trash.entries)} item(s) in trash, {len(expired)} past their deadline")
            for entry in expired:
                print(f"  {entry.resource_type:6} {entry.id}  {entry.name}  (due {entry.scheduled_deletion_at})")
            return 0

        result = await engine.run_purge_sweep()
        print(f"Sweep at {result.ran_at.isoformat()}")
        print(f"  Files purged:    {result.files_purged}")
        print(f"  Folders purged:  {result.folders_purged}")
        print(f"  Blobs released:  {result.blobs_released}")
        return 0
    finally:
        await engine.close()
        await sql_engine.dispose()


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
