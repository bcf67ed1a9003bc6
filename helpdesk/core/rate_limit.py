"""Rate limiting for public endpoints."""

from slowapi import Limiter
from slowapi.util import get_remote_address

from helpdesk.core.config import settings
from helpdesk.core.redis_client import get_redis_url

# Redis storage shares counters across workers; memory storage otherwise.
limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=get_redis_url() or "memory://",
    enabled=settings.RATE_LIMIT_ENABLED,
)
