"""Fixed-window admission control backed by Redis counters.

Two instances of :class:`RateLimiter` are configured: a strict one for
anonymous callers keyed by network address and a looser one for registered
callers keyed by account email. :func:`select_limiter` picks between them.
"""

import logging
import time
from dataclasses import dataclass

import redis

from legal_chat.config import settings
from legal_chat.identity import Identity
from legal_chat.services.circuit_breaker import CircuitBreaker, CircuitOpenError

logger = logging.getLogger(__name__)

# INCR and the first PEXPIRE must be atomic so a window always ends.
_INCR_WITH_TTL = (
    "local c=redis.call('INCR',KEYS[1]);"
    "if c==1 then redis.call('PEXPIRE',KEYS[1],ARGV[1]); end;"
    "local ttl=redis.call('PTTL',KEYS[1]); return {c, ttl};"
)


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of one admission check."""

    allowed: bool
    remaining: int
    reset_at: int
    limit: int

    @property
    def retry_after(self) -> int:
        """Seconds until the current window resets."""
        return max(0, self.reset_at - int(time.time()))

    def headers(self) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_at),
        }


class RateLimitExceededError(Exception):
    """Raised when a caller has used up its window."""

    def __init__(self, decision: RateLimitDecision):
        self.decision = decision
        super().__init__(f"Rate limit exceeded, retry in {decision.retry_after}s")


class RateLimiterUnavailableError(Exception):
    """Raised when the counter store cannot be reached."""


class RateLimiter:
    """Counts requests per identity in fixed windows of ``window_seconds``."""

    KEY_PREFIX = "rl"

    def __init__(self, name: str, limit: int, window_seconds: int):
        self.name = name
        self.limit = limit
        self.window_seconds = window_seconds
        self.redis_client: redis.Redis | None = None
        self.circuit = CircuitBreaker(
            name=f"rate_limit:{name}",
            trips_on=(redis.RedisError,),
            failure_threshold=settings.circuit_failure_threshold,
            recovery_timeout=settings.redis_recovery_seconds,
        )

    def connect(self, client: redis.Redis | None = None) -> None:
        self.redis_client = client or redis.from_url(settings.redis_url, decode_responses=True)

    def _key(self, identity_key: str) -> str:
        return f"{self.KEY_PREFIX}:{self.name}:{identity_key}"

    def admit(self, identity_key: str) -> RateLimitDecision:
        """Count one request for ``identity_key`` and decide whether it may proceed."""
        if self.redis_client is None:
            raise RateLimiterUnavailableError("Redis client not connected")

        window_ms = self.window_seconds * 1000
        try:
            with self.circuit.guard():
                res = self.redis_client.eval(
                    _INCR_WITH_TTL, 1, self._key(identity_key), window_ms
                )
        except CircuitOpenError as e:
            raise RateLimiterUnavailableError(str(e)) from e
        except redis.RedisError as e:
            logger.error(f"Rate limiter '{self.name}' store error: {e}")
            raise RateLimiterUnavailableError("Rate limit check failed") from e

        count = int(res[0])
        pttl = int(res[1])
        if pttl < 0:
            pttl = window_ms
        reset_at = int(time.time()) + (pttl + 999) // 1000

        return RateLimitDecision(
            allowed=count <= self.limit,
            remaining=max(0, self.limit - count),
            reset_at=reset_at,
            limit=self.limit,
        )

    def close(self) -> None:
        self.redis_client = None


anonymous_limiter = RateLimiter(
    name="chat:anonymous",
    limit=settings.anonymous_rate_limit,
    window_seconds=settings.rate_limit_window_seconds,
)
registered_limiter = RateLimiter(
    name="chat:registered",
    limit=settings.registered_rate_limit,
    window_seconds=settings.rate_limit_window_seconds,
)


def select_limiter(identity: Identity) -> tuple[RateLimiter, str]:
    """Pick the tier and the key a caller is counted under."""
    if identity.registered and identity.email:
        return registered_limiter, identity.email
    return anonymous_limiter, identity.client_ip
