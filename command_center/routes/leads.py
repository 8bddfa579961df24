"""
Capture routes: tenant websites and apps post leads / bookings here.

The response reflects only the tenant's own database write; upline sync is
queued and cannot fail the request.
"""
import logging

from flask import Blueprint, request, jsonify

from command_center.errors import ConfigurationError, PersistenceError
from command_center.services.sync import get_sync_service

logger = logging.getLogger('routes.leads')

bp = Blueprint('leads', __name__)


def _capture(kind, tenant):
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return jsonify({'error': 'JSON object body required'}), 400

    try:
        stored = get_sync_service().capture_and_sync(kind, payload, tenant)
    except ConfigurationError as e:
        return jsonify({'error': str(e)}), 404
    except PersistenceError as e:
        logger.error("Capture of %s for %s failed: %s", kind, tenant, e)
        return jsonify({'error': str(e)}), 502

    return jsonify({kind: stored}), 201


@bp.route('/api/<tenant>/leads', methods=['POST'])
def capture_lead(tenant):
    """Capture a lead in the tenant's database and queue upline sync."""
    return _capture('lead', tenant)


@bp.route('/api/<tenant>/bookings', methods=['POST'])
def capture_booking(tenant):
    """Capture a booking in the tenant's database and queue upline sync."""
    return _capture('booking', tenant)
