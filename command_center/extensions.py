"""
Shared client instances: Redis for circuit breakers / routing stats, and a
second binary-safe connection for the RQ sync queue.

redis.from_url does not connect until first use, so importing this module is
always safe (even when Redis is not running during tests).
"""
import redis

from command_center.config import REDIS_URL

# ── Redis ─────────────────────────────────────────────────────────────────────
redis_client = redis.from_url(REDIS_URL, decode_responses=True)

# RQ pickles job payloads, so its connection must not decode responses
rq_connection = redis.from_url(REDIS_URL)
