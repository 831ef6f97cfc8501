"""
Scheduling of backup sync jobs.
"""

from __future__ import annotations

import logging
from typing import Optional

from paperflame.db import DbClient, SyncJobRecord
from paperflame.queue import JobQueue
from shared.types import RecordType, SyncAction

logger = logging.getLogger(__name__)


def schedule_sync(
    db: DbClient,
    queue: JobQueue,
    *,
    user_id: str,
    record_type: RecordType,
    record_id: str,
    action: SyncAction = SyncAction.EXPORT,
    storage_path: Optional[str] = None,
) -> SyncJobRecord:
    """
    Persist a sync job and hand its id to the workers.

    The job row is written first so a lost enqueue is still picked up by the
    worker's database fallback. A job already waiting for the same record and
    action is returned as is; its id is on the queue already.
    """
    waiting = db.find_waiting_sync_job(record_type, record_id, action)
    if waiting:
        logger.debug("[%s] Already waiting for %s %s", waiting.job_id, record_type.value, record_id)
        return waiting

    job = db.create_sync_job(
        user_id, record_type, record_id, action, storage_path=storage_path
    )
    queue.enqueue(job.job_id)
    logger.info(
        "[%s] Scheduled %s of %s %s", job.job_id, action.value, record_type.value, record_id
    )
    return job
