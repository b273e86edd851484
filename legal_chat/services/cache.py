"""Redis answer cache keyed by normalized question text."""

import hashlib
import logging
import time
from dataclasses import dataclass

import redis

from legal_chat.config import settings
from legal_chat.services.circuit_breaker import CircuitBreaker, CircuitOpenError

logger = logging.getLogger(__name__)


class CacheUnavailableError(Exception):
    """Raised when the answer cache cannot be read or written."""


@dataclass(frozen=True)
class CachedAnswer:
    """A stored answer as seen by one lookup."""

    question: str
    answer: str
    hit_count: int
    created_at: int
    last_hit_at: int | None = None


def normalize_question(question: str) -> str:
    """Fold case and surrounding whitespace so near-identical questions share a key."""
    return question.strip().lower()


class CacheService:
    """Exact-match answer cache stored as Redis hashes.

    Entries never expire from here; eviction is left to the Redis
    ``maxmemory-policy`` of the deployment.
    """

    KEY_PREFIX = "answer:"

    def __init__(self, redis_url: str | None = None):
        self.redis_url = redis_url or settings.redis_url
        self.redis_client: redis.Redis | None = None
        self.circuit = CircuitBreaker(
            name="answer_cache",
            trips_on=(redis.RedisError,),
            failure_threshold=settings.circuit_failure_threshold,
            recovery_timeout=settings.redis_recovery_seconds,
        )

    def connect(self, client: redis.Redis | None = None) -> None:
        """Attach a shared client, or open one from ``redis_url``."""
        self.redis_client = client or redis.from_url(self.redis_url, decode_responses=True)

    def key_for(self, question: str) -> str:
        normalized = normalize_question(question)
        return f"{self.KEY_PREFIX}{hashlib.sha256(normalized.encode('utf-8')).hexdigest()}"

    def _client(self) -> redis.Redis:
        if self.redis_client is None:
            raise CacheUnavailableError("Redis client not connected")
        return self.redis_client

    def lookup(self, question: str) -> CachedAnswer | None:
        """Return the cached answer for ``question`` and count the hit."""
        client = self._client()
        key = self.key_for(question)

        try:
            with self.circuit.guard():
                data = client.hgetall(key)
                if not data or "answer" not in data:
                    return None

                now = int(time.time())
                hit_count = client.hincrby(key, "hit_count", 1)
                client.hset(key, "last_hit_at", now)
        except CircuitOpenError as e:
            raise CacheUnavailableError(str(e)) from e
        except redis.RedisError as e:
            logger.error(f"Redis lookup error: {e}")
            raise CacheUnavailableError("Answer cache lookup failed") from e

        return CachedAnswer(
            question=data.get("question", question),
            answer=data["answer"],
            hit_count=int(hit_count),
            created_at=int(data.get("created_at", now)),
            last_hit_at=now,
        )

    def store(self, question: str, answer: str) -> None:
        """Store an answer; an existing entry keeps its hit count and creation time."""
        client = self._client()
        key = self.key_for(question)

        try:
            with self.circuit.guard():
                client.hset(key, mapping={"question": question.strip(), "answer": answer})
                client.hsetnx(key, "hit_count", 0)
                client.hsetnx(key, "created_at", int(time.time()))
        except CircuitOpenError as e:
            raise CacheUnavailableError(str(e)) from e
        except redis.RedisError as e:
            logger.error(f"Redis store error: {e}")
            raise CacheUnavailableError("Answer cache store failed") from e
        logger.debug(f"Cached answer for: {question[:50]}...")

    def close(self) -> None:
        if self.redis_client:
            self.redis_client.close()
            self.redis_client = None


answer_cache = CacheService()
