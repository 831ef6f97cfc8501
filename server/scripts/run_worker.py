"""
Run the backup sync worker.

Blocks on the Redis queue (or polls the database when nothing is queued),
exports expenses and invoices to backup storage and flags them as synced.
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
from paperflame.dependencies import get_queue_client
from paperflame.worker import mark_overdue, process_next, run_loop

logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="PaperFlame backup sync worker")
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=None,
        help="Seconds to wait for a job before polling again",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Drain the queue without blocking and exit",
    )
    parser.add_argument(
        "--mark-overdue",
        action="store_true",
        help="Flip past-due sent invoices to overdue and exit",
    )
    args = parser.parse_args()

    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
        datefmt="%m/%d/%Y %I:%M:%S %p",
    )

    if args.mark_overdue:
        count = mark_overdue()
        logger.info("Marked %d invoices overdue", count)
        return 0

    if args.once:
        processed = 0
        while process_next(block=False):
            processed += 1
        logger.info(
            "Processed %d sync jobs, %d ids left on the queue",
            processed,
            get_queue_client().depth(),
        )
        return 0

    run_loop(args.poll_interval)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
