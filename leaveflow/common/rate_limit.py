"""Request throttling with slowapi.

Clients are keyed by remote address. The shared limiter applies
``DEFAULT_RATE_LIMIT`` to every route; leave submission adds its own, tighter
``CREATE_RATE_LIMIT``. Counters live in ``RATE_LIMIT_STORAGE_URI``, so several
workers only share a budget when that points at a shared store such as Redis.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from leaveflow.config import settings

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.DEFAULT_RATE_LIMIT],
    storage_uri=settings.RATE_LIMIT_STORAGE_URI,
)
