"""
Centralized configuration: all env vars, database registry, sync tuning.
"""
import os


def _env_flag(name, default):
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


# ── Logging ──────────────────────────────────────────────────────────────────
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
LOG_FORMAT = os.getenv('LOG_FORMAT', 'text')

# ── Redis (RQ queue + circuit breakers + routing stats) ──────────────────────
REDIS_URL = os.getenv('REDIS_URL', 'redis://localhost:6379/0')

# ── Command center's own database (retry queue) ──────────────────────────────
DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///local.db')

# ── Tenant databases ─────────────────────────────────────────────────────────
# Chain: creditprenuers / coyslogistics → pitchMarketingAgency → pitchModularSpaces
DATABASES = {
    'pitchModularSpaces': {
        'name': 'Pitch Modular Spaces',
        'url': os.getenv('PITCH_MODULAR_SUPABASE_URL', 'https://uksjnwnvarhldlxyymef.supabase.co'),
        'anon_key': os.getenv('PITCH_MODULAR_ANON_KEY'),
        'service_key': os.getenv('PITCH_MODULAR_SERVICE_KEY'),
        'is_master': True,
        'sync_to': None,
    },
    'pitchMarketingAgency': {
        'name': 'Pitch Marketing Agency',
        'url': os.getenv('PITCH_AGENCY_SUPABASE_URL', 'https://bwycunbaajaemhcgufiz.supabase.co'),
        'anon_key': os.getenv('PITCH_AGENCY_ANON_KEY'),
        'service_key': os.getenv('PITCH_AGENCY_SERVICE_KEY'),
        'is_master': False,
        'sync_to': 'pitchModularSpaces',
    },
    'creditprenuers': {
        'name': 'CreditPreneurs',
        'url': os.getenv('CREDITPRENUERS_SUPABASE_URL'),
        'anon_key': os.getenv('CREDITPRENUERS_ANON_KEY'),
        'service_key': os.getenv('CREDITPRENUERS_SERVICE_KEY'),
        'is_master': False,
        'sync_to': 'pitchMarketingAgency',
    },
    'coyslogistics': {
        'name': 'Coys Logistics',
        'url': os.getenv('COYSLOGISTICS_SUPABASE_URL'),
        'anon_key': os.getenv('COYSLOGISTICS_ANON_KEY'),
        'service_key': os.getenv('COYSLOGISTICS_SERVICE_KEY'),
        'is_master': False,
        'sync_to': 'pitchMarketingAgency',
    },
}

# Table per record kind, identical in every tenant database
SYNC_TABLES = {
    'lead': 'crm_leads',
    'booking': 'bookings',
}
SYNC_CONFLICT_TARGET = 'original_id,synced_from'

# ── Upline sync tuning ───────────────────────────────────────────────────────
SYNC_HOP_TIMEOUT = float(os.getenv('SYNC_HOP_TIMEOUT', '10'))
SYNC_QUEUE_NAME = os.getenv('SYNC_QUEUE_NAME', 'upline_sync')
SYNC_JOB_TIMEOUT = int(os.getenv('SYNC_JOB_TIMEOUT', '300'))
SYNC_BATCH_LIMIT = int(os.getenv('SYNC_BATCH_LIMIT', '1000'))
SYNC_STAMP_LOCAL = _env_flag('SYNC_STAMP_LOCAL', False)

# Retry queue for failed upline walks. SYNC_RETRY_ENABLED=false drops failed
# walks after logging them.
SYNC_RETRY_ENABLED = _env_flag('SYNC_RETRY_ENABLED', True)
SYNC_RETRY_MAX_ATTEMPTS = int(os.getenv('SYNC_RETRY_MAX_ATTEMPTS', '6'))
SYNC_RETRY_BASE_DELAY = int(os.getenv('SYNC_RETRY_BASE_DELAY', '60'))
SYNC_RETRY_MAX_DELAY = int(os.getenv('SYNC_RETRY_MAX_DELAY', '3600'))

# ── Pitch Marketing (external CRM) ───────────────────────────────────────────
PITCH_API_URL = os.getenv('PITCH_API_URL', 'https://api.pitchmarketingagency.com')
PITCH_API_KEY = os.getenv('PITCH_API_KEY')
PITCH_WEBHOOK_SECRET = os.getenv('PITCH_WEBHOOK_SECRET')
PITCH_TIMEOUT = float(os.getenv('PITCH_TIMEOUT', '10'))

# ModCRM → Pitch Marketing business IDs
BUSINESS_IDS = {
    'creditprenuers': os.getenv('CREDITPRENUERS_BUSINESS_ID', 'BC_CREDITPREN_STAGING'),
    'coyslogistics': os.getenv('COYSLOGISTICS_BUSINESS_ID', 'BC_COYSLOG_STAGING'),
}

# ── ModCRM ───────────────────────────────────────────────────────────────────
MODCRM_API_URL = os.getenv('MODCRM_API_URL')
MODCRM_API_KEY = os.getenv('MODCRM_API_KEY')
MODCRM_WEBHOOK_SECRET = os.getenv('MODCRM_WEBHOOK_SECRET')

# ── Lead qualification ───────────────────────────────────────────────────────
QUALIFY_THRESHOLD = int(os.getenv('QUALIFY_THRESHOLD', '50'))
HIGH_VALUE_STAGES = ('qualified', 'hot_lead', 'ready_to_close')
