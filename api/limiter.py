"""
api/limiter.py -- Shared slowapi rate limiter instance (login throttle).

Import this in both api/main.py (to mount as middleware) and
api/routes/v1/auth.py (to apply the login limit with @limiter.limit()).

Using a single shared instance ensures all routes share the same in-memory
counter store. If this were instantiated in each module separately, each
module would get its own isolated counter and rate limits would never trigger.

Only POST /auth/login is limited. Counters are keyed by client IP, so one
address exhausting its window does not affect any other. The limit is read
from settings on every check (LOGIN_THROTTLE_MAX_ATTEMPTS per
LOGIN_THROTTLE_WINDOW_SECONDS, fixed window).
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://", strategy="fixed-window")


def login_rate_limit() -> str:
    return get_settings().login_rate_limit
