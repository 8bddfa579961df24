"""
Webhook routes: ModCRM domain events in, Pitch Marketing status callbacks in.
"""
import hmac
import logging

from flask import Blueprint, request, jsonify

from command_center import config
from command_center.services.lead_router import get_lead_router

logger = logging.getLogger('routes.webhook')

bp = Blueprint('webhook', __name__)


def _secret_ok(expected):
    """True when no secret is configured or X-Webhook-Secret matches it."""
    if not expected:
        return True
    provided = request.headers.get('X-Webhook-Secret', '')
    return hmac.compare_digest(provided.encode(), expected.encode())


@bp.route('/webhook/modcrm', methods=['POST'])
def modcrm_webhook():
    """Score a ModCRM event and route the lead to Pitch Marketing if qualified."""
    if not _secret_ok(config.MODCRM_WEBHOOK_SECRET):
        return jsonify({'error': 'invalid webhook secret'}), 401

    event = request.get_json(silent=True)
    if not isinstance(event, dict) or not event.get('type'):
        return jsonify({'error': 'event with a type is required'}), 400
    if event.get('data') is not None and not isinstance(event['data'], dict):
        return jsonify({'error': 'event data must be an object'}), 400

    result = get_lead_router().process_modcrm_webhook(event)
    logger.info("ModCRM %s for %s → %s", event.get('type'), event.get('business'), result)
    return jsonify(result), 200


@bp.route('/webhook/pitch-marketing/status', methods=['POST'])
def pitch_status_webhook():
    """Relay a Pitch Marketing lead status change back to ModCRM."""
    if not _secret_ok(config.PITCH_WEBHOOK_SECRET):
        return jsonify({'error': 'invalid webhook secret'}), 401

    data = request.get_json(silent=True) or {}
    lead_id = data.get('leadId')
    status = data.get('status')
    if not lead_id or not status:
        return jsonify({'error': 'leadId and status are required'}), 400

    return jsonify(get_lead_router().sync_status_to_modcrm(lead_id, status)), 200
