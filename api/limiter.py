"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in api/main.py (to mount as middleware) and in the route modules
(to apply per-route limits with @limiter.limit() / @api_limit).

Using a single shared instance ensures all routes share the same in-memory
counter store. api_limit is a shared limit with scope "api": every /api route
it decorates draws from one per-client budget (API_RATE_LIMIT, default
100/hour). Login adds its own tighter limit on top.

RATE_LIMIT_ENABLED=false disables all limits (used by the test suite).
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

_settings = get_settings()

limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://",
    enabled=_settings.rate_limit_enabled,
)

api_limit = limiter.shared_limit(_settings.api_rate_limit, scope="api")
login_limit = limiter.limit(_settings.login_rate_limit)
