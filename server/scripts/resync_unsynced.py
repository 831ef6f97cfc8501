"""
Schedule export jobs for every record that is not backed up yet.

Useful after a storage outage, or after jobs ended in ERROR once their
retries ran out.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from paperflame.config import get_settings
from paperflame.dependencies import get_db_client, get_queue_client
from paperflame.export import record_type_of
from paperflame.sync import schedule_sync

logger = logging.getLogger(__name__)


def resync(*, limit: int, dry_run: bool) -> int:
    db = get_db_client()
    queue = get_queue_client()
    records = db.list_unsynced(limit=limit)
    if dry_run:
        return len(records)
    for record in records:
        schedule_sync(
            db,
            queue,
            user_id=record.user_id,
            record_type=record_type_of(record),
            record_id=record.id,
        )
    return len(records)


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Schedule backup exports for unsynced records"
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=500,
        help="Max number of records to schedule",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report how many records would be scheduled without enqueueing",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=get_settings().log_level.upper(),
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
        datefmt="%m/%d/%Y %I:%M:%S %p",
    )
    count = resync(limit=args.limit, dry_run=args.dry_run)
    logger.info("%s %d records", "Would schedule" if args.dry_run else "Scheduled", count)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
