"""Anonymous free-question quota.

The consumed count travels in the ``q_used`` cookie as a signed JWT that
expires 24 hours after it was last refreshed. The server keeps no per-caller
table. To stop two concurrent requests carrying the same token from both
spending the last free question, each answer first claims a numbered slot in
Redis (``SET NX``) under the token's random id; the claim expires with the
token.

Known weakness: a caller who drops the cookie starts over with a fresh token.
"""

import logging
import time
import uuid
from dataclasses import dataclass

import jwt
import redis

from legal_chat.config import settings
from legal_chat.services.circuit_breaker import CircuitBreaker, CircuitOpenError

logger = logging.getLogger(__name__)

QUOTA_COOKIE = "q_used"
UNLIMITED = "unlimited"
_ALGORITHM = "HS256"


class QuotaStoreError(Exception):
    """Raised when quota slots cannot be claimed or released."""


@dataclass(frozen=True)
class QuotaState:
    """Count carried by one anonymous token, plus the token's id."""

    count: int
    token_id: str


@dataclass(frozen=True)
class QuotaGate:
    blocked: bool


class QuotaTracker:
    SLOT_PREFIX = "quota:slot"

    def __init__(
        self,
        secret: str | None = None,
        free_limit: int | None = None,
        ttl_seconds: int | None = None,
    ):
        self.secret = secret or settings.quota_secret
        self.free_limit = free_limit if free_limit is not None else settings.free_question_limit
        self.ttl_seconds = ttl_seconds or settings.quota_token_ttl_seconds
        self.redis_client: redis.Redis | None = None
        self.circuit = CircuitBreaker(
            name="quota",
            trips_on=(redis.RedisError,),
            failure_threshold=settings.circuit_failure_threshold,
            recovery_timeout=settings.redis_recovery_seconds,
        )

    def connect(self, client: redis.Redis | None = None) -> None:
        self.redis_client = client or redis.from_url(settings.redis_url, decode_responses=True)

    # --- token round-trip ---

    def read_token(self, token: str | None) -> QuotaState:
        """Decode the cookie value; missing, expired or forged tokens count as zero."""
        fresh = QuotaState(count=0, token_id=uuid.uuid4().hex)
        if not token:
            return fresh

        try:
            claims = jwt.decode(token, self.secret, algorithms=[_ALGORITHM])
        except jwt.ExpiredSignatureError:
            logger.debug("Quota token expired, starting a new allowance")
            return fresh
        except jwt.InvalidTokenError as e:
            logger.warning(f"Rejected quota token: {e}")
            return fresh

        count = claims.get("q")
        token_id = claims.get("jti")
        if not isinstance(count, int) or count < 0 or not isinstance(token_id, str):
            logger.warning("Rejected quota token with malformed claims")
            return fresh
        return QuotaState(count=count, token_id=token_id)

    def issue_token(self, state: QuotaState) -> str:
        now = int(time.time())
        claims = {
            "q": state.count,
            "jti": state.token_id,
            "iat": now,
            "exp": now + self.ttl_seconds,
        }
        return jwt.encode(claims, self.secret, algorithm=_ALGORITHM)

    # --- gating ---

    def check_and_gate(self, registered: bool, current_count: int) -> QuotaGate:
        if registered:
            return QuotaGate(blocked=False)
        return QuotaGate(blocked=current_count >= self.free_limit)

    def next_count(
        self, registered: bool, current_count: int, claimed_slot: int | None = None
    ) -> int:
        """Count to report after a successful answer."""
        if registered:
            return current_count
        return max(current_count + 1, claimed_slot or 0)

    def remaining(self, registered: bool, count: int) -> int | str:
        if registered:
            return UNLIMITED
        return max(0, self.free_limit - count)

    # --- slot claims ---

    def _slot_key(self, token_id: str, slot: int) -> str:
        return f"{self.SLOT_PREFIX}:{token_id}:{slot}"

    def _client(self) -> redis.Redis:
        if self.redis_client is None:
            raise QuotaStoreError("Redis client not connected")
        return self.redis_client

    def claim_slot(self, state: QuotaState) -> int | None:
        """Claim the first free slot above the token's count.

        Returns the slot number, or None when every free slot is taken.
        """
        client = self._client()
        try:
            with self.circuit.guard():
                for slot in range(state.count + 1, self.free_limit + 1):
                    key = self._slot_key(state.token_id, slot)
                    if client.set(key, 1, nx=True, ex=self.ttl_seconds):
                        return slot
        except CircuitOpenError as e:
            raise QuotaStoreError(str(e)) from e
        except redis.RedisError as e:
            logger.error(f"Quota slot claim error: {e}")
            raise QuotaStoreError("Quota slot claim failed") from e
        return None

    def release_slot(self, state: QuotaState, slot: int) -> None:
        """Give back a slot claimed by a request that produced no answer."""
        client = self._client()
        try:
            with self.circuit.guard():
                client.delete(self._slot_key(state.token_id, slot))
        except CircuitOpenError as e:
            raise QuotaStoreError(str(e)) from e
        except redis.RedisError as e:
            logger.error(f"Quota slot release error: {e}")
            raise QuotaStoreError("Quota slot release failed") from e

    def close(self) -> None:
        self.redis_client = None


quota_tracker = QuotaTracker()
