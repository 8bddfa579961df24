"""
Sync operations routes: backfill, retry sweep, and the retry queue listing.
"""
import logging

from flask import Blueprint, request, jsonify

from command_center.config import SYNC_BATCH_LIMIT, SYNC_TABLES
from command_center.services.registry import get_registry
from command_center.services.sync_queue import (
    enqueue_batch_sync, enqueue_retry_sweep, list_sync_failures,
)

logger = logging.getLogger('routes.sync')

bp = Blueprint('sync', __name__)


@bp.route('/api/<tenant>/sync/backfill', methods=['POST'])
def backfill(tenant):
    """Queue a batch upline sync of the tenant's local records."""
    if tenant not in get_registry():
        return jsonify({'error': f'Unknown tenant: {tenant}'}), 404

    data = request.get_json(silent=True) or {}
    kind = data.get('kind', 'lead')
    if kind not in SYNC_TABLES:
        return jsonify({'error': f'Unknown kind: {kind}. Available: {list(SYNC_TABLES)}'}), 400

    try:
        limit = int(data.get('limit', SYNC_BATCH_LIMIT))
    except (TypeError, ValueError):
        return jsonify({'error': 'limit must be an integer'}), 400

    try:
        job = enqueue_batch_sync(kind, tenant, since=data.get('since'), limit=limit)
    except Exception as e:
        logger.error("Failed to queue backfill for %s: %s", tenant, e)
        return jsonify({'error': f'Failed to queue backfill: {e}'}), 503
    return jsonify({'job_id': job.id, 'tenant': tenant, 'kind': kind}), 202


@bp.route('/api/sync/retry', methods=['POST'])
def retry():
    """Queue a sweep over due entries in the retry queue."""
    try:
        job = enqueue_retry_sweep()
    except Exception as e:
        logger.error("Failed to queue retry sweep: %s", e)
        return jsonify({'error': f'Failed to queue retry sweep: {e}'}), 503
    return jsonify({'job_id': job.id}), 202


@bp.route('/api/sync/failures')
def failures():
    status = request.args.get('status', 'pending') or None
    limit = request.args.get('limit', 100, type=int)
    return jsonify({'failures': list_sync_failures(status=status, limit=limit)})
