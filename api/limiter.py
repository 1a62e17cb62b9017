"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in api/main.py (to mount as middleware) and in the routers that
apply per-route limits with @limiter.limit() (register, forgot-password).

Login does not use this limiter: its window contract lives in
auth/ratelimit.py and is enforced through the enforce_login_rate_limit
dependency.

Using a single shared instance ensures all routes share the same in-memory
counter store. If this were instantiated in each module separately, each
module would get its own isolated counter and rate limits would never trigger.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
