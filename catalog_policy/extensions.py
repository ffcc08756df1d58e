"""
Shared client instances.

redis.from_url() does not connect until first use, so importing this module is
always safe (even when Redis is unavailable during tests).
"""
import redis

from catalog_policy.config import REDIS_URL

# ── Redis ─────────────────────────────────────────────────────────────────────
# RQ stores pickled payloads, so this client must not decode responses.
redis_client = redis.from_url(REDIS_URL)
