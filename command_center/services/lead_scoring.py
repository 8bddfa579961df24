"""
Lead scoring + qualification.

Score = Σ weight(activity.type) × activity.count over the business's weight
table, clamped to [0, 100]. Activity types with no weight score 0: the
activity taxonomy grows without coordinated deploys, so an unknown type is
never an error.

Category ("lead type") selection walks the business's lead types in declared
order:
  - a type with min_score that the score meets wins and ends the scan;
  - otherwise a type whose tag prefix appears in any activity type becomes
    the candidate, and the scan continues (a later tag match replaces it,
    but nothing replaces a min_score match).
No match → 'general'. Qualification is score >= QUALIFY_THRESHOLD regardless
of category.
"""
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml

from command_center.config import QUALIFY_THRESHOLD

logger = logging.getLogger('services.lead_scoring')

GENERAL = 'general'


@dataclass(frozen=True)
class LeadType:
    name: str
    tags: Tuple[str, ...] = ()
    min_score: Optional[int] = None
    assign_to: Optional[str] = None
    priority: Optional[str] = None

    def tag_prefixes(self) -> Tuple[str, ...]:
        return tuple(tag.split('-')[0].lower() for tag in self.tags)

    def to_routing(self) -> Dict[str, Any]:
        return {'tags': list(self.tags), 'assign_to': self.assign_to, 'priority': self.priority}


@dataclass(frozen=True)
class RoutingConfig:
    """Scoring weights + lead types per business. Built once, never mutated."""
    scoring: Mapping[str, Mapping[str, int]]
    lead_types: Mapping[str, Tuple[LeadType, ...]]
    qualify_threshold: int = QUALIFY_THRESHOLD
    version: str = 'default'

    @classmethod
    def from_dict(cls, raw: Dict[str, Any], qualify_threshold: int = QUALIFY_THRESHOLD) -> 'RoutingConfig':
        scoring = {
            business: MappingProxyType({k: int(v) for k, v in (weights or {}).items()})
            for business, weights in (raw.get('scoring') or {}).items()
        }
        lead_types = {}
        for business, types in (raw.get('lead_types') or {}).items():
            lead_types[business] = tuple(
                LeadType(
                    name=name,
                    tags=tuple(entry.get('tags') or ()),
                    min_score=entry.get('min_score'),
                    assign_to=entry.get('assign_to'),
                    priority=entry.get('priority'),
                )
                for name, entry in (types or {}).items()
            )
        return cls(
            scoring=MappingProxyType(scoring),
            lead_types=MappingProxyType(lead_types),
            qualify_threshold=qualify_threshold,
            version=str(raw.get('version', 'default')),
        )


@dataclass
class Activity:
    type: str
    count: int = 1

    @classmethod
    def coerce(cls, raw) -> 'Activity':
        if isinstance(raw, Activity):
            return raw
        count = raw.get('count') or 1
        return cls(type=str(raw.get('type') or ''), count=int(count))

    def to_dict(self) -> Dict[str, Any]:
        return {'type': self.type, 'count': self.count}


@dataclass
class QualifiedLead:
    lead: Dict[str, Any]
    score: int
    category: str
    qualified: bool
    matched_routing: Optional[Dict[str, Any]] = None
    qualified_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.lead,
            'score': self.score,
            'leadType': self.category,
            'qualified': self.qualified,
            'config': self.matched_routing,
            'qualifiedAt': self.qualified_at,
        }


# ── Config loading (YAML with hardcoded fallback) ──────────────────────────

_routing_config = None


def _default_config():
    """Hardcoded fallback if YAML is missing."""
    return {
        'version': 'default',
        'scoring': {
            'creditprenuers': {
                'ebookDownload': 15, 'videoWatched': 10, 'formSubmit': 20, 'pageVisit': 5,
                'emailOpen': 5, 'emailClick': 10, 'pricingPageVisit': 15,
                'membershipInterest': 25, 'whiteLabelInquiry': 35,
                'callBooked': 30, 'chatInitiated': 10,
            },
            'coyslogistics': {
                'academyPageVisit': 10, 'videoWatched': 10, 'formSubmit': 20,
                'courseInterest': 25, 'fleetInquiry': 35,
                'appDownload': 20, 'appActive': 30,
            },
        },
        'lead_types': {
            'creditprenuers': {
                'highValue': {'min_score': 70, 'tags': ['high-value', 'creditprenuers', 'qualified'],
                              'assign_to': 'credit-team'},
                'membership': {'tags': ['membership-interest', 'creditprenuers'],
                               'assign_to': 'membership-team'},
                'whiteLabelPartner': {'min_score': 80, 'tags': ['white-label', 'b2b-partner', 'creditprenuers'],
                                      'assign_to': 'partnerships-team', 'priority': 'high'},
            },
            'coyslogistics': {
                'dispatchTraining': {'tags': ['dispatch-training', 'coyslogistics'],
                                     'assign_to': 'dispatch-team'},
                'fleetOwner': {'min_score': 75, 'tags': ['fleet-owner', 'coyslogistics', 'b2b'],
                               'assign_to': 'fleet-team', 'priority': 'high'},
                'driverRecruit': {'tags': ['driver', 'coyslogistics'], 'assign_to': 'driver-team'},
            },
        },
    }


def load_routing_config() -> RoutingConfig:
    """Load routing config from YAML, cached, falling back to the built-in tables."""
    global _routing_config
    if _routing_config is not None:
        return _routing_config

    config_path = os.path.join(os.path.dirname(__file__), 'routing_config.yaml')
    try:
        with open(config_path, 'r') as f:
            raw = yaml.safe_load(f)
        logger.info("Routing config loaded from YAML (version=%s)", raw.get('version', '?'))
    except Exception as e:
        logger.warning("Routing YAML not loaded (%s), using defaults", e)
        raw = _default_config()

    _routing_config = RoutingConfig.from_dict(raw)
    return _routing_config


# ── Scoring ─────────────────────────────────────────────────────────────────

def calculate_score(config: RoutingConfig, business: str, activities) -> int:
    """Weighted activity sum for `business`, clamped to [0, 100]."""
    weights = config.scoring.get(business)
    if not weights:
        return 0

    score = 0
    for raw in activities:
        activity = Activity.coerce(raw)
        score += weights.get(activity.type, 0) * activity.count

    return max(0, min(score, 100))


def match_lead_type(config: RoutingConfig, business: str, score: int, activities) -> Optional[LeadType]:
    """Pick the lead type for a scored lead; None means 'general'."""
    activity_types = [Activity.coerce(a).type.lower() for a in activities]
    matched = None

    for lead_type in config.lead_types.get(business, ()):
        if lead_type.min_score is not None and score >= lead_type.min_score:
            return lead_type

        prefixes = lead_type.tag_prefixes()
        if any(prefix in activity_type for activity_type in activity_types for prefix in prefixes):
            matched = lead_type

    return matched


def qualify_lead(config: RoutingConfig, business: str, lead: Dict[str, Any], activities) -> QualifiedLead:
    score = calculate_score(config, business, activities)
    lead_type = match_lead_type(config, business, score, activities)
    return QualifiedLead(
        lead=dict(lead or {}),
        score=score,
        category=lead_type.name if lead_type else GENERAL,
        qualified=score >= config.qualify_threshold,
        matched_routing=lead_type.to_routing() if lead_type else None,
    )
