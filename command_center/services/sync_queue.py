"""
Sync queue: RQ handoff between capture and the upline walker, plus the
persisted retry queue for walks that failed part-way.

Capture calls enqueue_upline_sync() and returns; an RQ worker listening on
SYNC_QUEUE_NAME runs run_upline_sync(). Failed walks land in sync_failures
(when SYNC_RETRY_ENABLED) and are re-walked by retry_due_failures() with
exponential backoff. All persistence here is wrapped so that a queue or
retry-table problem never surfaces to the capture caller.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from command_center.config import (
    SYNC_QUEUE_NAME, SYNC_JOB_TIMEOUT, SYNC_BATCH_LIMIT,
    SYNC_RETRY_ENABLED, SYNC_RETRY_MAX_ATTEMPTS,
    SYNC_RETRY_BASE_DELAY, SYNC_RETRY_MAX_DELAY,
)
from command_center.database import get_session
from command_center.models.sync_failure import SyncFailure, PENDING, RESOLVED, ABANDONED

logger = logging.getLogger('services.sync_queue')


# ── Lazy RQ queue (avoids import-time Redis connection) ─────────────────────

_queue = None


def _get_queue():
    global _queue
    if _queue is None:
        from rq import Queue
        from command_center.extensions import rq_connection
        _queue = Queue(SYNC_QUEUE_NAME, connection=rq_connection)
    return _queue


def next_retry_delay(attempts: int) -> timedelta:
    """Backoff after `attempts` failed tries: base * 2**attempts, capped."""
    seconds = min(SYNC_RETRY_BASE_DELAY * (2 ** attempts), SYNC_RETRY_MAX_DELAY)
    return timedelta(seconds=seconds)


# ── Handoff ─────────────────────────────────────────────────────────────────

def enqueue_upline_sync(kind: str, record: Dict[str, Any], origin: str):
    """Schedule the upline walk for a freshly captured record. Never raises."""
    try:
        job = _get_queue().enqueue(run_upline_sync, kind, record, origin, job_timeout=SYNC_JOB_TIMEOUT)
        logger.info("Queued upline sync for %s %s from %s (job %s)", kind, record.get('id'), origin, job.id)
        return job
    except Exception as e:
        logger.error("Could not queue upline sync for %s %s from %s: %s", kind, record.get('id'), origin, e)
        from command_center.services.registry import get_registry
        record_sync_failure(kind, record, origin, get_registry().parent(origin), f'enqueue failed: {e}')
        return None


def run_upline_sync(kind: str, record: Dict[str, Any], origin: str) -> Dict[str, list]:
    """RQ job: walk the record upline and queue a retry if any hop failed."""
    from command_center.services.sync import get_sync_service

    results = get_sync_service().sync_upline(kind, record, origin)
    if results['failed']:
        first = results['failed'][0]
        logger.warning("Upline sync for %s %s from %s stopped at %s: %s",
                       kind, record.get('id'), origin, first['db'], first['error'])
        record_sync_failure(kind, record, origin, first['db'], first['error'])
    return results


def run_batch_sync(kind: str, origin: str, since: Optional[str] = None,
                   limit: int = SYNC_BATCH_LIMIT) -> Dict[str, Any]:
    """RQ job: backfill all local records of `origin` created at/after `since`."""
    from command_center.services.sync import get_sync_service
    return get_sync_service().batch_sync_upline(kind, origin, since=since, limit=limit)


def enqueue_batch_sync(kind: str, origin: str, since: Optional[str] = None, limit: int = SYNC_BATCH_LIMIT):
    return _get_queue().enqueue(run_batch_sync, kind, origin, since, limit, job_timeout=SYNC_JOB_TIMEOUT * 10)


def enqueue_retry_sweep():
    return _get_queue().enqueue(retry_due_failures, job_timeout=SYNC_JOB_TIMEOUT * 10)


# ── Retry queue ─────────────────────────────────────────────────────────────

def record_sync_failure(kind: str, record: Dict[str, Any], origin: str,
                        failed_db: Optional[str], error: str) -> Optional[int]:
    """Persist a failed walk for later retry. Returns the row id, or None."""
    if not SYNC_RETRY_ENABLED:
        logger.info("Retry queue disabled, dropping failed sync of %s %s", kind, record.get('id'))
        return None

    session = get_session()
    try:
        failure = SyncFailure(
            kind=kind,
            origin=origin,
            record_id=str(record['id']) if record.get('id') is not None else None,
            failed_db=failed_db,
            record=record,
            error=str(error)[:1000],
            attempts=0,
            status=PENDING,
            next_attempt_at=datetime.now(timezone.utc) + next_retry_delay(0),
        )
        session.add(failure)
        session.commit()
        logger.info("Queued %s %s from %s for retry (failed at %s)", kind, record.get('id'), origin, failed_db)
        return failure.id
    except Exception:
        session.rollback()
        logger.error("Failed to record sync failure for %s %s", kind, record.get('id'), exc_info=True)
        return None
    finally:
        session.close()


def retry_due_failures(now: Optional[datetime] = None, limit: int = 100, service=None) -> Dict[str, int]:
    """
    Re-walk every pending failure whose next_attempt_at has passed.

    A walk with no failed hop resolves the row; otherwise attempts grows and
    the row is rescheduled with backoff, or abandoned at SYNC_RETRY_MAX_ATTEMPTS.
    """
    if service is None:
        from command_center.services.sync import get_sync_service
        service = get_sync_service()
    now = now or datetime.now(timezone.utc)

    stats = {'retried': 0, 'resolved': 0, 'rescheduled': 0, 'abandoned': 0}
    session = get_session()
    try:
        due = (
            session.query(SyncFailure)
            .filter(SyncFailure.status == PENDING, SyncFailure.next_attempt_at <= now)
            .order_by(SyncFailure.next_attempt_at)
            .limit(limit)
            .all()
        )
        for failure in due:
            stats['retried'] += 1
            results = service.sync_upline(failure.kind, failure.record, failure.origin)
            if not results['failed']:
                failure.status = RESOLVED
                failure.error = ''
                stats['resolved'] += 1
                continue

            failure.attempts = (failure.attempts or 0) + 1
            failure.failed_db = results['failed'][0]['db']
            failure.error = str(results['failed'][0]['error'])[:1000]
            if failure.attempts >= SYNC_RETRY_MAX_ATTEMPTS:
                failure.status = ABANDONED
                stats['abandoned'] += 1
                logger.error("Giving up on %s %s from %s after %d attempts: %s",
                             failure.kind, failure.record_id, failure.origin, failure.attempts, failure.error)
            else:
                failure.next_attempt_at = now + next_retry_delay(failure.attempts)
                stats['rescheduled'] += 1

        session.commit()
    except Exception:
        session.rollback()
        logger.error("Retry sweep failed", exc_info=True)
    finally:
        session.close()

    if stats['retried']:
        logger.info("Retry sweep: %s", stats)
    return stats


def list_sync_failures(status: Optional[str] = PENDING, limit: int = 100) -> List[Dict[str, Any]]:
    session = get_session()
    try:
        query = session.query(SyncFailure)
        if status:
            query = query.filter(SyncFailure.status == status)
        rows = query.order_by(SyncFailure.created_at.desc(), SyncFailure.id.desc()).limit(limit).all()
        return [row.to_dict() for row in rows]
    finally:
        session.close()
