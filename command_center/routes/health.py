"""
Health routes: liveness, circuit breaker states, routing / queue stats.
"""
import logging

from flask import Blueprint, jsonify

from command_center.extensions import redis_client as r
from command_center.services.circuit_breaker import get_all_breakers
from command_center.services.lead_router import STATS_KEY

logger = logging.getLogger('routes.health')

bp = Blueprint('health', __name__)


@bp.route('/health')
def health_check():
    """Health check endpoint."""
    return jsonify({"status": "healthy"}), 200


@bp.route('/api/health')
def api_health():
    """Circuit breaker state for every tenant database and the external CRM."""
    services = {name: cb.get_health() for name, cb in get_all_breakers().items()}
    return jsonify({'services': services})


@bp.route('/api/health/<path:service>/reset', methods=['POST'])
def reset_circuit(service):
    cb = get_all_breakers().get(service)
    if cb is None:
        return jsonify({'ok': False, 'error': f'Unknown service: {service}'}), 404
    cb.reset()
    return jsonify({'ok': True, 'service': service, 'state': cb.state})


@bp.route('/api/stats')
def get_stats():
    """Lead routing outcome counters + sync queue depth."""
    from command_center.config import SYNC_QUEUE_NAME
    try:
        routing = {k: int(v) for k, v in (r.hgetall(STATS_KEY) or {}).items()}
        queue_size = r.llen(f'rq:queue:{SYNC_QUEUE_NAME}') or 0
    except Exception as e:
        logger.error("Error reading stats from Redis: %s", e)
        return jsonify({'error': 'stats unavailable'}), 503

    return jsonify({'routing': routing, 'sync_queue_size': queue_size})
