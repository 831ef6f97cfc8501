"""
Worker loop that mirrors expenses and invoices to backup storage.

Each sync job either exports a record's backup document or removes a
previously exported file. Failed jobs are retried up to
``sync_max_attempts`` times before they are left in ERROR.
"""

from __future__ import annotations

import logging
import time
from datetime import date
from typing import Optional

from paperflame.config import Settings, get_settings
from paperflame.db import DbClient, SyncJobRecord
from paperflame.dependencies import get_db_client, get_queue_client, get_storage_client
from paperflame.export import build_export_document, export_path
from paperflame.queue import JobQueue
from paperflame.storage import StorageClient
from paperflame.sync import schedule_sync
from shared.types import RecordType, SyncAction, SyncStatus

logger = logging.getLogger(__name__)


def _export_record(
    job: SyncJobRecord, db: DbClient, storage: StorageClient, settings: Settings
) -> SyncStatus:
    record = db.get_record(job.record_type, job.record_id)
    if record is None:
        logger.info("[%s] %s %s no longer exists", job.job_id, job.record_type.value, job.record_id)
        return SyncStatus.CANCELLED

    # Snapshot before uploading; the record may be edited while we upload.
    source_updated_at = record.updated_at
    previous_path = record.export_path
    path = export_path(record, settings.storage_root)
    storage.upload_json(path, build_export_document(record))
    logger.info("[%s] Uploaded %s to %s", job.job_id, job.record_type.value, path)

    if previous_path and previous_path != path:
        storage.delete(previous_path)
        logger.info("[%s] Removed previous export %s", job.job_id, previous_path)

    synced = db.mark_record_synced(
        job.record_type,
        job.record_id,
        export_path=path,
        source_updated_at=source_updated_at,
    )
    if synced:
        return SyncStatus.SUCCESS

    current = db.get_record(job.record_type, job.record_id)
    if current is None:
        # Deleted while we were uploading; the delete job may have run already.
        storage.delete(path)
        logger.info("[%s] Record deleted during export, removed %s", job.job_id, path)
        return SyncStatus.CANCELLED
    if export_path(current, settings.storage_root) != path:
        # The edit moved the record; the follow-up job only knows the old path.
        storage.delete(path)
        logger.info("[%s] Record moved during export, removed %s", job.job_id, path)
    logger.info("[%s] Record changed during export, leaving it unsynced", job.job_id)
    return SyncStatus.SUCCESS


def _delete_export(job: SyncJobRecord, storage: StorageClient) -> SyncStatus:
    if not job.storage_path:
        return SyncStatus.CANCELLED
    storage.delete(job.storage_path)
    logger.info("[%s] Deleted %s", job.job_id, job.storage_path)
    return SyncStatus.SUCCESS


def process_job(
    job: SyncJobRecord,
    db: DbClient,
    *,
    storage: Optional[StorageClient] = None,
    queue: Optional[JobQueue] = None,
    settings: Optional[Settings] = None,
) -> SyncStatus:
    """
    Run a single claimed job and record its outcome.

    Returns the status the job ended in. A failed job with attempts left goes
    back to WAITING and is re-enqueued.
    """
    storage = storage or get_storage_client()
    settings = settings or get_settings()

    try:
        if job.action == SyncAction.DELETE:
            final_status = _delete_export(job, storage)
        else:
            final_status = _export_record(job, db, storage, settings)
    except Exception as exc:
        attempts = job.attempts + 1
        logger.exception(
            "[%s] Sync attempt %d/%d failed", job.job_id, attempts, settings.sync_max_attempts
        )
        if attempts < settings.sync_max_attempts:
            db.update_sync_job(
                job.job_id,
                status=SyncStatus.WAITING,
                last_error=str(exc),
                attempts=attempts,
            )
            if queue is not None:
                queue.enqueue(job.job_id)
            return SyncStatus.WAITING
        db.update_sync_job(
            job.job_id, status=SyncStatus.ERROR, last_error=str(exc), attempts=attempts
        )
        return SyncStatus.ERROR

    db.update_sync_job(job.job_id, status=final_status, attempts=job.attempts + 1)
    return final_status


def process_next(
    *,
    db: Optional[DbClient] = None,
    queue: Optional[JobQueue] = None,
    storage: Optional[StorageClient] = None,
    settings: Optional[Settings] = None,
    block: bool = True,
    timeout: Optional[int] = None,
) -> bool:
    """
    Fetch and process one job from the queue (or DB fallback). Returns True if processed.
    """
    db = db or get_db_client()
    queue = queue or get_queue_client()

    job_id = queue.dequeue(block=block, timeout=timeout)
    job: Optional[SyncJobRecord] = None

    if job_id:
        job = db.claim_sync_job(job_id)
        if not job:
            # Stale id (retried, requeued or claimed by another worker).
            logger.debug("Skipping job_id %s: missing or already claimed", job_id)
    if not job:
        # Fallback to polling for WAITING jobs whose enqueue was lost.
        job = db.claim_next_waiting_job()
        if not job:
            return False

    process_job(job, db, storage=storage, queue=queue, settings=settings)
    return True


def mark_overdue(
    *,
    db: Optional[DbClient] = None,
    queue: Optional[JobQueue] = None,
    today: Optional[date] = None,
) -> int:
    """Flip past-due sent invoices to overdue and schedule their re-export."""
    db = db or get_db_client()
    queue = queue or get_queue_client()
    invoices = db.mark_overdue_invoices(today or date.today())
    for invoice in invoices:
        schedule_sync(
            db,
            queue,
            user_id=invoice.user_id,
            record_type=RecordType.INVOICE,
            record_id=invoice.id,
        )
    if invoices:
        logger.info("Marked %d invoices overdue", len(invoices))
    return len(invoices)


def run_loop(poll_interval_seconds: Optional[float] = None) -> None:
    """
    Simple polling loop that blocks on the queue. Intended to be run under systemd/supervisor.
    """
    settings = get_settings()
    poll_interval_seconds = poll_interval_seconds or settings.worker_poll_interval_seconds
    db = get_db_client()
    queue = get_queue_client()
    storage = get_storage_client()
    last_sweep: Optional[date] = None
    while True:
        try:
            requeued = db.requeue_stale_locks(
                lock_timeout_seconds=settings.sync_lock_timeout_seconds
            )
            if requeued:
                logger.warning("Requeued %d stale sync jobs", requeued)
        except Exception:
            logger.exception("Failed to requeue stale locks")

        if last_sweep != date.today():
            try:
                mark_overdue(db=db, queue=queue)
                last_sweep = date.today()
            except Exception:
                logger.exception("Overdue invoice sweep failed")

        processed = process_next(
            db=db,
            queue=queue,
            storage=storage,
            settings=settings,
            block=True,
            timeout=max(1, int(poll_interval_seconds)),
        )
        if not processed:
            time.sleep(poll_interval_seconds)
