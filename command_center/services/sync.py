"""
Lead / booking capture and upline sync.

Architecture:
  CreditPreneurs DB ─┐
                     ├→ Pitch Marketing Agency → Pitch Modular Spaces (master)
  Coys Logistics DB ─┘

Capture writes to the tenant's own database first and returns as soon as that
write succeeds. The upline walk runs later on the RQ worker (see sync_queue):
it copies the record into each ancestor in turn, stamping lineage fields
(synced_from / original_id) that point at the immediate predecessor, and
stops at the first hop that fails.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from command_center.config import (
    SYNC_BATCH_LIMIT, SYNC_CONFLICT_TARGET, SYNC_STAMP_LOCAL, SYNC_TABLES,
)
from command_center.errors import ConfigurationError, PersistenceError
from command_center.services.registry import DatabaseRegistry, get_registry
from command_center.services.supabase import get_client

logger = logging.getLogger('services.sync')

LINEAGE_FIELDS = ('synced_from', 'synced_at', 'original_id')


def _now_iso():
    return datetime.now(timezone.utc).isoformat()


def table_for(kind: str) -> str:
    try:
        return SYNC_TABLES[kind]
    except KeyError:
        raise ValueError(f"Unknown record kind '{kind}'. Available: {list(SYNC_TABLES)}") from None


def build_sync_copy(row: Dict[str, Any], from_db: str, origin: str) -> Dict[str, Any]:
    """Copy of `row` for the parent of `from_db`: local id dropped, lineage stamped."""
    synced = {k: v for k, v in row.items() if k != 'id'}
    synced['synced_from'] = from_db
    synced['original_id'] = row.get('id')
    synced['synced_at'] = _now_iso()
    synced['source'] = row.get('source') or origin
    return synced


class UplineSync:
    """
    Capture + upline walker bound to one registry.

    client_factory has get_client's signature and is injectable so tests can
    stand in fake tenant stores.
    """

    def __init__(self, registry: DatabaseRegistry, client_factory: Callable = get_client,
                 stamp_local: bool = SYNC_STAMP_LOCAL):
        self.registry = registry
        self.client_factory = client_factory
        self.stamp_local = stamp_local

    def _client(self, db_key, elevated=False):
        return self.client_factory(self.registry, db_key, elevated)

    def _local_client(self, origin):
        if origin not in self.registry:
            raise ConfigurationError(f"Source database {origin} is not registered")
        client = self._client(origin)
        if client is None:
            raise ConfigurationError(f"Source database {origin} not configured")
        return client

    # ── Capture ───────────────────────────────────────────────────────

    def capture_and_sync(self, kind: str, record: Dict[str, Any], origin: str,
                         dispatch: Optional[Callable] = None) -> Dict[str, Any]:
        """
        Insert `record` into the origin's own database and hand it off upline.

        Raises ConfigurationError for an unknown/unconfigured origin and
        PersistenceError when the local insert fails. Nothing that happens
        upline can fail this call.
        """
        table = table_for(kind)
        client = self._local_client(origin)

        row = {k: v for k, v in record.items() if k != 'id' and k not in LINEAGE_FIELDS}
        row.setdefault('status', 'new')
        row['source'] = origin
        row['created_at'] = _now_iso()

        try:
            stored = client.insert(table, row)
        except PersistenceError as e:
            raise PersistenceError(f"Local insert failed: {e}", db=origin, status_code=e.status_code) from e

        logger.info("%s %s saved locally to %s", kind.capitalize(), stored.get('id'),
                    self.registry.display_name(origin))

        if dispatch is None:
            from command_center.services.sync_queue import enqueue_upline_sync
            dispatch = enqueue_upline_sync
        dispatch(kind, stored, origin)

        return stored

    # ── Upline walk ───────────────────────────────────────────────────

    def sync_upline(self, kind: str, record: Dict[str, Any], origin: str) -> Dict[str, list]:
        """
        Walk origin → master writing one copy per hop. Never raises.

        Each hop's copy carries synced_from = the database it came from and
        original_id = that database's id for the row, so lineage is traceable
        hop by hop. The walk stops at the first unreachable or failing parent;
        skipping it would leave rows further up without a traceable link.
        """
        results = {'success': [], 'failed': []}
        try:
            table = table_for(kind)
        except ValueError as e:
            results['failed'].append({'db': origin, 'error': str(e)})
            return results

        current = origin
        row = record
        for parent in self.registry.upline(origin):
            client = self._client(parent, elevated=True)
            if client is None:
                results['failed'].append({'db': parent, 'error': 'not configured'})
                logger.warning("✗ Cannot sync %s to %s: not configured", kind, parent)
                break

            try:
                data = client.upsert(table, build_sync_copy(row, current, origin),
                                     on_conflict=SYNC_CONFLICT_TARGET)
                if not data:
                    raise PersistenceError(f"{parent}: upsert returned no row", db=parent)
            except Exception as e:
                results['failed'].append({'db': parent, 'error': str(e)})
                logger.error("✗ Failed to sync %s to %s: %s", kind, self.registry.display_name(parent), e)
                break

            results['success'].append({'db': parent, 'data': data})
            logger.info("✓ Synced %s to %s", kind, self.registry.display_name(parent))
            row = data[0]
            current = parent

        if self.stamp_local and not results['failed'] and current == self.registry.master and current != origin:
            self._stamp_synced_to_master(table, record, origin)

        return results

    def _stamp_synced_to_master(self, table, record, origin):
        client = self._client(origin)
        if client is None or record.get('id') is None:
            return
        try:
            client.update(table, record['id'], {'synced_to_master': True})
        except Exception as e:
            logger.warning("Could not stamp %s %s as synced_to_master: %s", table, record.get('id'), e)

    # ── Batch / backfill ──────────────────────────────────────────────

    def batch_sync_upline(self, kind: str, origin: str, since: Optional[str] = None,
                          limit: int = SYNC_BATCH_LIMIT) -> Dict[str, Any]:
        """Re-walk every local record created at/after `since` (oldest first)."""
        table = table_for(kind)
        client = self._local_client(origin)

        try:
            records = client.select(table, since=since, limit=limit)
        except PersistenceError as e:
            raise PersistenceError(f"Failed to fetch {table}: {e}", db=origin) from e

        logger.info("Found %d %s records to sync from %s", len(records), kind, origin)

        summary = {'total': len(records), 'synced': 0, 'failed': 0, 'errors': []}
        for record in records:
            result = self.sync_upline(kind, record, origin)
            if result['failed']:
                summary['failed'] += 1
                summary['errors'].append({'record_id': record.get('id'), 'failed': result['failed']})
            else:
                summary['synced'] += 1

        logger.info("Batch sync %s/%s: %d synced, %d failed", origin, kind, summary['synced'], summary['failed'])
        return summary


# ── Module-level convenience API (process-wide registry) ────────────────────

_service = None


def get_sync_service() -> UplineSync:
    global _service
    if _service is None:
        _service = UplineSync(get_registry())
    return _service


def capture_and_sync_lead(lead: Dict[str, Any], origin: str) -> Dict[str, Any]:
    return get_sync_service().capture_and_sync('lead', lead, origin)


def capture_and_sync_booking(booking: Dict[str, Any], origin: str) -> Dict[str, Any]:
    return get_sync_service().capture_and_sync('booking', booking, origin)


def sync_lead_upline(lead: Dict[str, Any], origin: str) -> Dict[str, list]:
    return get_sync_service().sync_upline('lead', lead, origin)


def sync_booking_upline(booking: Dict[str, Any], origin: str) -> Dict[str, list]:
    return get_sync_service().sync_upline('booking', booking, origin)


def batch_sync_leads(origin: str, since: Optional[str] = None, limit: int = SYNC_BATCH_LIMIT) -> Dict[str, Any]:
    return get_sync_service().batch_sync_upline('lead', origin, since=since, limit=limit)
