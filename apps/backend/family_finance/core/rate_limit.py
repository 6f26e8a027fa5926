from __future__ import annotations

import logging
import time

from fastapi import Request
from limits import RateLimitItemPerSecond
from limits.storage import MemoryStorage
from limits.strategies import FixedWindowRateLimiter
from slowapi.util import get_remote_address

from .config import settings
from .errors import RateLimited

logger = logging.getLogger(__name__)

_MESSAGES = {
    "auth": "Too many authentication attempts, please try again later.",
    "password_reset": "Too many password reset attempts, please try again later.",
    "bank_sync": "Too many bank sync requests, please try again later.",
    "report_export": "Too many export requests, please try again later.",
}

# counters expire with their window, so the store stays bounded by live keys
storage = MemoryStorage()
limiter = FixedWindowRateLimiter(storage)


def client_key(request: Request) -> str:
    """Socket peer address.

    Forwarded headers are ignored here; behind a proxy, run uvicorn with
    ``--proxy-headers --forwarded-allow-ips`` so the peer is rewritten upstream.
    """
    return get_remote_address(request)


def enforce_rate_limit(request: Request, category: str, identity: str | None = None) -> None:
    if not settings.RATE_LIMIT_ENABLED:
        return
    rule = settings.RATE_LIMITS.get(category)
    if rule is None:
        return
    limit, window = rule
    item = RateLimitItemPerSecond(limit, window)
    keys = [category, client_key(request)]
    if identity is not None:
        keys.append(identity)
    if limiter.hit(item, *keys):
        return
    reset_at = limiter.get_window_stats(item, *keys)[0]
    retry_after = max(1, int(reset_at - time.time()))
    logger.warning("Rate limit hit for %s by %s", category, ":".join(keys[1:]))
    raise RateLimited(_MESSAGES.get(category, "Too many requests, please try again later."), retry_after)
