"""
Tenant database clients: thin PostgREST (Supabase REST) wrapper over requests.

get_client() is the only way the sync service obtains a client. It returns
None instead of raising when a database is not configured, so callers can
treat "not configured" as an ordinary, non-fatal outcome.
"""
import logging
from typing import Any, Dict, List, Optional

import requests

from command_center.config import SYNC_HOP_TIMEOUT
from command_center.errors import PersistenceError
from command_center.services.circuit_breaker import db_breaker_name, get_breaker
from command_center.services.registry import DatabaseRegistry, RegistryEntry

logger = logging.getLogger('services.supabase')


class TenantClient:
    """REST client for one tenant database with one credential tier."""

    def __init__(self, entry: RegistryEntry, api_key: str, elevated: bool = False,
                 timeout: float = SYNC_HOP_TIMEOUT, session=None):
        self.db = entry.key
        self.display_name = entry.display_name
        self.elevated = elevated
        self.base_url = entry.base_url.rstrip('/')
        self.timeout = timeout
        self.http = session or requests
        self.headers = {
            'apikey': api_key,
            'Authorization': f'Bearer {api_key}',
            'Content-Type': 'application/json',
        }

    def __repr__(self):
        tier = 'service' if self.elevated else 'anon'
        return f'<TenantClient {self.db} ({tier})>'

    def _url(self, table):
        return f'{self.base_url}/rest/v1/{table}'

    def _request(self, method, table, prefer=None, params=None, json=None):
        headers = dict(self.headers)
        if prefer:
            headers['Prefer'] = prefer

        def _send():
            try:
                resp = self.http.request(
                    method, self._url(table),
                    headers=headers, params=params, json=json, timeout=self.timeout,
                )
            except requests.RequestException as e:
                raise PersistenceError(f"{self.db}: {e}", db=self.db) from e
            if resp.status_code >= 400:
                detail = resp.text[:200] if resp.text else ''
                raise PersistenceError(
                    f"{self.db} {method} {table} → {resp.status_code} {detail}".strip(),
                    db=self.db, status_code=resp.status_code,
                )
            return resp

        try:
            resp = get_breaker(db_breaker_name(self.db)).call(_send)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"{self.db}: {e}", db=self.db) from e

        if not resp.content:
            return []
        data = resp.json()
        return data if isinstance(data, list) else [data]

    # ── Table operations ──────────────────────────────────────────────

    def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        """INSERT one row and return it as stored (with its new id)."""
        rows = self._request('POST', table, prefer='return=representation', json=row)
        if not rows:
            raise PersistenceError(f"{self.db}: insert into {table} returned no row", db=self.db)
        return rows[0]

    def upsert(self, table: str, row: Dict[str, Any], on_conflict: str) -> List[Dict[str, Any]]:
        """INSERT or UPDATE on the `on_conflict` columns; returns affected rows."""
        return self._request(
            'POST', table,
            prefer='resolution=merge-duplicates,return=representation',
            params={'on_conflict': on_conflict},
            json=row,
        )

    def select(self, table: str, since: Optional[str] = None, limit: int = 1000) -> List[Dict[str, Any]]:
        """Rows ordered by created_at ascending, optionally created at/after `since`."""
        params = {'select': '*', 'order': 'created_at.asc', 'limit': str(limit)}
        if since:
            params['created_at'] = f'gte.{since}'
        return self._request('GET', table, params=params)

    def update(self, table: str, row_id: Any, values: Dict[str, Any]) -> List[Dict[str, Any]]:
        return self._request(
            'PATCH', table,
            prefer='return=representation',
            params={'id': f'eq.{row_id}'},
            json=values,
        )


def get_client(registry: DatabaseRegistry, db_key: str, elevated: bool = False,
               timeout: float = SYNC_HOP_TIMEOUT) -> Optional[TenantClient]:
    """
    Client for `db_key`, or None when it cannot be built.

    elevated=False uses the tenant's anon key (its own local writes);
    elevated=True uses the service key, required for writes into a parent.
    """
    entry = registry.get(db_key)
    if entry is None or not entry.base_url:
        logger.warning("Database %s not configured", db_key)
        return None

    api_key = entry.credential(elevated)
    if not api_key:
        logger.warning("No %s key for %s", 'service' if elevated else 'anon', db_key)
        return None

    return TenantClient(entry, api_key, elevated=elevated, timeout=timeout)
