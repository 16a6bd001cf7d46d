"""Rate limiting shared by every router (per client address)."""

from slowapi import Limiter
from slowapi.util import get_remote_address

from ridecore.config import settings

limiter = Limiter(key_func=get_remote_address)

# Applied per route with ``@limiter.limit(RATE_LIMIT)``
RATE_LIMIT = settings.api_rate_limit
