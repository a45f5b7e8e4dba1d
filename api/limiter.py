"""
api/limiter.py -- Shared slowapi rate limiter for inbound requests.

Imported by api/main.py (mounted through SlowAPIMiddleware) and by
api/routes/v1/auth.py (per-route limits such as the login throttle).

One shared instance means one counter store. Separate Limiter objects per
module would each count on their own and the limits would never trigger.

This throttles clients of the API. The outbound quota toward the metadata
upstream is a different concern, handled by core/ratelimit.py.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
