"""
Simple in-memory rate limiting for the authentication endpoints.

Login, two-factor verify and two-factor regenerate each count attempts
per key over a sliding window. Keys combine the client address with the
identity being attacked (the login email, or the user behind the pending
two-factor cookie), so one noisy client cannot lock out everyone else.

State lives in process memory. Several API workers each keep their own
counts.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import math
import time
from collections import defaultdict, deque
from typing import Deque, DefaultDict

from fastapi import Request

from bankledger.config import settings
from bankledger.exceptions import RateLimitExceededError
from bankledger.security import TokenExpired, TokenInvalid, decode_pending_token

security_logger = logging.getLogger("bankledger.security")


class RateLimiter:
    """Provide in-memory rate limiting with asyncio locking."""

    def __init__(self, clock=time.monotonic) -> None:
        self._clock = clock
        self._attempts: DefaultDict[str, Deque[float]] = defaultdict(deque)
        self._lock = asyncio.Lock()

    async def hit(self, key: str, max_requests: int, window_seconds: int) -> int | None:
        """
        Record an attempt for the key.

        Returns None when the attempt is allowed, otherwise the number of
        seconds until the oldest attempt in the window expires.
        """
        async with self._lock:
            now = self._clock()
            window_start = now - window_seconds
            bucket = self._attempts[key]

            while bucket and bucket[0] <= window_start:
                bucket.popleft()

            if len(bucket) >= max_requests:
                return max(1, math.ceil(bucket[0] + window_seconds - now))

            bucket.append(now)
            return None

    def reset(self) -> None:
        self._attempts.clear()
        self._lock = asyncio.Lock()


rate_limiter = RateLimiter()


def client_address(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def pending_subject(pending_token: str | None) -> str:
    """The user id behind a pending two-factor cookie, or "-" if unreadable."""
    if not pending_token:
        return "-"
    try:
        return str(decode_pending_token(pending_token)["sub"])
    except (TokenExpired, TokenInvalid):
        return "-"


async def enforce_auth_rate_limit(request: Request, action: str, identity: str) -> None:
    """
    Count one attempt at an auth action and refuse it once over the limit.

    Raises:
        RateLimitExceededError: AUTH_RATE_LIMIT_ATTEMPTS already used within
            AUTH_RATE_LIMIT_WINDOW_SECONDS for this client and identity.
    """
    rate_key = f"{action}:{client_address(request)}:{identity.lower()}"
    retry_after = await rate_limiter.hit(
        rate_key,
        settings.AUTH_RATE_LIMIT_ATTEMPTS,
        settings.AUTH_RATE_LIMIT_WINDOW_SECONDS,
    )

    if retry_after is not None:
        anonymised_key = hashlib.sha256(rate_key.encode()).hexdigest()[:12]
        security_logger.warning("Auth rate limit exceeded for %s (identifier %s)", action, anonymised_key)
        raise RateLimitExceededError(retry_after)
