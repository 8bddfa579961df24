"""
Lead router: ModCRM events → scored, categorized leads → Pitch Marketing CRM.

Independent of the database upline sync: this path scores the event stream
and pushes only qualified leads to the agency's external CRM. Unqualified
leads short-circuit before any network call. Delivery failures are logged
and reported in the result, never raised.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import requests

from command_center.config import (
    PITCH_API_URL, PITCH_API_KEY, PITCH_TIMEOUT, BUSINESS_IDS,
    MODCRM_API_URL, MODCRM_API_KEY, HIGH_VALUE_STAGES,
)
from command_center.errors import ConfigurationError
from command_center.services.circuit_breaker import PITCH_MARKETING, get_breaker
from command_center.services.lead_scoring import (
    RoutingConfig, QualifiedLead, load_routing_config, calculate_score, qualify_lead,
)

logger = logging.getLogger('services.lead_router')

ROUTED_BY = 'modcrm-lead-router'
STATS_KEY = 'leadrouter:results'


def _now_iso():
    return datetime.now(timezone.utc).isoformat()


def _as_dict(value) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


# ── Event → activity mapping ───────────────────────────────────────────────

def activities_for_new_contact(contact: Dict[str, Any]) -> List[Dict[str, Any]]:
    activities = [{'type': 'formSubmit', 'count': 1}]
    if contact.get('source') == 'landing_page':
        activities.append({'type': 'pageVisit', 'count': 1})
    return activities


def activities_for_form_submission(submission: Dict[str, Any]) -> List[Dict[str, Any]]:
    form_type = str(submission.get('formType') or '')
    activities = [
        {'type': 'formSubmit', 'count': 1},
        {'type': form_type, 'count': 1},
    ]
    if 'membership' in form_type or 'pricing' in form_type:
        activities.append({'type': 'membershipInterest', 'count': 1})
    if 'white_label' in form_type or 'partner' in form_type:
        activities.append({'type': 'whiteLabelInquiry', 'count': 1})
    return activities


def activities_for_payment(payment: Dict[str, Any]) -> List[Dict[str, Any]]:
    # A completed payment is pre-qualified: callBooked x2 pushes it over the threshold
    return [
        {'type': 'formSubmit', 'count': 1},
        {'type': 'pricingPageVisit', 'count': 1},
        {'type': str(payment.get('productType') or ''), 'count': 1},
        {'type': 'callBooked', 'count': 2},
    ]


def activities_for_stage_change(pipeline_data: Dict[str, Any]) -> Optional[List[Dict[str, Any]]]:
    """Activities for a high-value stage transition, or None when the stage doesn't qualify."""
    if pipeline_data.get('toStage') not in HIGH_VALUE_STAGES:
        return None
    return [
        {'type': 'formSubmit', 'count': 1},
        {'type': 'pricingPageVisit', 'count': 1},
        {'type': 'membershipInterest', 'count': 1},
    ]


class LeadRouter:
    """Scores, qualifies and routes leads for every configured business."""

    def __init__(self, config: Optional[RoutingConfig] = None, api_url: str = PITCH_API_URL,
                 api_key: Optional[str] = PITCH_API_KEY, business_ids: Optional[Dict[str, str]] = None,
                 timeout: float = PITCH_TIMEOUT, stats=None):
        self.config = config or load_routing_config()
        self.api_url = (api_url or '').rstrip('/')
        self.api_key = api_key
        self.business_ids = dict(BUSINESS_IDS if business_ids is None else business_ids)
        self.timeout = timeout
        self._stats = stats

    # ── Scoring ───────────────────────────────────────────────────────

    def calculate_score(self, business: str, activities) -> int:
        return calculate_score(self.config, business, activities)

    def qualify_lead(self, business: str, lead: Dict[str, Any], activities) -> QualifiedLead:
        return qualify_lead(self.config, business, lead, activities)

    # ── Routing ───────────────────────────────────────────────────────

    def build_payload(self, business: str, lead: Dict[str, Any], qualified: QualifiedLead,
                      activities) -> Dict[str, Any]:
        routing = qualified.matched_routing or {}
        return {
            'source': business,
            'sourceId': lead.get('id'),
            'contact': {
                'firstName': lead.get('firstName') or lead.get('first_name'),
                'lastName': lead.get('lastName') or lead.get('last_name'),
                'email': lead.get('email'),
                'phone': lead.get('phone'),
            },
            'leadData': {
                'type': qualified.category,
                'score': qualified.score,
                'tags': routing.get('tags') or [],
                'assignTo': routing.get('assign_to'),
                'priority': routing.get('priority') or 'normal',
            },
            'activities': [dict(a) for a in activities],
            'metadata': {
                'routedAt': _now_iso(),
                'routedBy': ROUTED_BY,
                'businessId': self.business_ids.get(business),
            },
        }

    def _submit(self, payload: Dict[str, Any]) -> str:
        """POST the payload and return the external lead id."""
        if not self.api_url or not self.api_key:
            raise ConfigurationError("Pitch Marketing API URL / key not configured")

        resp = get_breaker(PITCH_MARKETING).call(
            requests.post,
            f"{self.api_url}/leads",
            headers={
                'Authorization': f'Bearer {self.api_key}',
                'Content-Type': 'application/json',
            },
            json=payload,
            timeout=self.timeout,
        )
        resp.raise_for_status()
        body = resp.json() if resp.content else {}
        lead_id = body.get('id') or body.get('leadId')
        if not lead_id:
            raise ValueError(f"Pitch Marketing response has no lead id: {str(body)[:200]}")
        return str(lead_id)

    def route_to_external_crm(self, business: str, lead: Dict[str, Any], activities) -> Dict[str, Any]:
        """Qualify `lead` and, if qualified, submit it to the Pitch Marketing CRM."""
        lead = lead or {}
        qualified = self.qualify_lead(business, lead, activities)

        if not qualified.qualified:
            logger.info("Lead %s (%s) not qualified for routing: score=%d",
                        lead.get('id'), business, qualified.score)
            return self._outcome({'routed': False, 'reason': 'score_too_low', 'score': qualified.score})

        payload = self.build_payload(business, lead, qualified, activities)
        logger.info("Routing lead %s to Pitch Marketing: type=%s score=%d",
                    lead.get('id'), qualified.category, qualified.score)

        try:
            lead_id = self._submit(payload)
        except ConfigurationError as e:
            logger.warning("Not routing lead %s: %s", lead.get('id'), e)
            return self._outcome({'routed': False, 'reason': 'not_configured', 'score': qualified.score})
        except Exception as e:
            logger.error("Failed to route lead %s to Pitch Marketing: %s", lead.get('id'), e)
            return self._outcome({
                'routed': False, 'reason': 'delivery_failed',
                'score': qualified.score, 'error': str(e),
            })

        return self._outcome({
            'routed': True,
            'leadId': lead_id,
            'score': qualified.score,
            'type': qualified.category,
            'assignedTo': (qualified.matched_routing or {}).get('assign_to'),
        })

    def _outcome(self, result: Dict[str, Any]) -> Dict[str, Any]:
        key = 'routed' if result.get('routed') else result.get('reason', 'unknown')
        try:
            stats = self._stats
            if stats is None:
                from command_center.extensions import redis_client as stats
            stats.hincrby(STATS_KEY, key, 1)
        except Exception as e:
            logger.debug("Could not record routing stats: %s", e)
        return result

    # ── ModCRM webhooks ───────────────────────────────────────────────

    def process_modcrm_webhook(self, event: Dict[str, Any]) -> Dict[str, Any]:
        event_type = event.get('type')
        business = event.get('business')
        data = _as_dict(event.get('data'))

        handler = {
            'contact.created': self.handle_new_contact,
            'form.submitted': self.handle_form_submission,
            'payment.completed': self.handle_payment_completed,
            'pipeline.stage_changed': self.handle_stage_change,
        }.get(event_type)

        if handler is None:
            logger.info("Unhandled ModCRM webhook type: %s", event_type)
            return {'routed': False, 'reason': 'unhandled_event', 'type': event_type}
        return handler(business, data)

    def handle_new_contact(self, business, contact):
        return self.route_to_external_crm(business, contact, activities_for_new_contact(contact))

    def handle_form_submission(self, business, submission):
        return self.route_to_external_crm(
            business, _as_dict(submission.get('contact')), activities_for_form_submission(submission),
        )

    def handle_payment_completed(self, business, payment):
        return self.route_to_external_crm(
            business, _as_dict(payment.get('customer')), activities_for_payment(payment),
        )

    def handle_stage_change(self, business, pipeline_data):
        activities = activities_for_stage_change(pipeline_data)
        if activities is None:
            return self._outcome({'routed': False, 'reason': 'stage_not_qualifying'})
        return self.route_to_external_crm(business, _as_dict(pipeline_data.get('contact')), activities)

    # ── Status back-sync ──────────────────────────────────────────────

    def sync_status_to_modcrm(self, pitch_lead_id: str, status: str) -> Dict[str, Any]:
        """Push a Pitch Marketing status change back to the ModCRM contact."""
        if not MODCRM_API_URL or not MODCRM_API_KEY:
            logger.info("ModCRM not configured, status %s for %s not synced", status, pitch_lead_id)
            return {'synced': False, 'reason': 'not_configured'}

        try:
            resp = requests.post(
                f"{MODCRM_API_URL.rstrip('/')}/contacts/status",
                headers={'Authorization': f'Bearer {MODCRM_API_KEY}'},
                json={'externalLeadId': pitch_lead_id, 'status': status, 'source': 'pitch-marketing'},
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except Exception as e:
            logger.error("Failed to sync status %s for %s to ModCRM: %s", status, pitch_lead_id, e)
            return {'synced': False, 'reason': 'delivery_failed', 'error': str(e)}

        logger.info("Synced status %s for %s to ModCRM", status, pitch_lead_id)
        return {'synced': True, 'timestamp': _now_iso()}


_router = None


def get_lead_router() -> LeadRouter:
    global _router
    if _router is None:
        _router = LeadRouter()
    return _router
