"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in both api/main.py (to mount as middleware) and the v1 routers
(to apply per-route limits with @limiter.limit()).

Three tiers, all keyed on the client address:
  default      API_RATE_LIMIT        every route without its own limit
  AUTH_LIMIT   AUTH_RATE_LIMIT       login and token refresh
  SENSITIVE    SENSITIVE_RATE_LIMIT  anything that sends email or checks an OTP

The OTP engine keeps no attempt counter, so SENSITIVE_LIMIT is what bounds
guessing of 6-digit codes.

Using a single shared instance ensures all routes share the same in-memory
counter store. If this were instantiated in each module separately, each
module would get its own isolated counter and rate limits would never trigger.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

_settings = get_settings()

AUTH_LIMIT = _settings.auth_rate_limit
SENSITIVE_LIMIT = _settings.sensitive_rate_limit

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[_settings.api_rate_limit],
    storage_uri="memory://",
    enabled=_settings.rate_limit_enabled,
)
