from slowapi import Limiter
from slowapi.util import get_remote_address

from ..settings import settings

# Per-IP. Route-specific limits are applied with @limiter.limit(...)
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.rate_limit_default],
    enabled=settings.rate_limit_enabled,
)
