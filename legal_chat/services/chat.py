"""Chat orchestrator: admission, quota, cache, provider, history."""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from legal_chat.identity import Identity
from legal_chat.services.cache import answer_cache
from legal_chat.services.conversations import ExchangeMetadata, conversation_recorder
from legal_chat.services.llm import ProviderNotConfiguredError, llm_service
from legal_chat.services.metrics import metrics
from legal_chat.services.quota import QuotaState, QuotaStoreError, quota_tracker
from legal_chat.services.rate_limit import (
    RateLimitDecision,
    RateLimitExceededError,
    select_limiter,
)

logger = logging.getLogger(__name__)

Dispatch = Callable[..., Any]


@dataclass
class ChatResult:
    """Everything the endpoint needs to build its response."""

    decision: RateLimitDecision
    q_used: int
    remaining: int | str
    answer: str | None = None
    cached: bool = False
    session_id: int | None = None
    need_signup: bool = False
    quota_token: str | None = None


class ChatOrchestrator:
    """
    Main orchestrator for answering a chat message.

    Flow:
    1. Rate-limit admission for the caller's tier
    2. Anonymous free-quota gate (claims a slot)
    3. Cache lookup on the normalized question
    4. On miss: call the provider, store the answer
    5. Open or continue the conversation session and dispatch message recording
    6. Advance the anonymous counter and issue a refreshed token
    """

    def admit(self, identity: Identity) -> RateLimitDecision:
        """Count the request against the caller's tier.

        Raises:
            RateLimitExceededError: If the caller's window is used up
            RateLimiterUnavailableError: If the counter store cannot be reached
        """
        limiter, key = select_limiter(identity)
        decision = limiter.admit(key)
        if not decision.allowed:
            metrics.record_rate_limited()
            logger.warning(f"Rate limit exceeded for {key} (registered: {identity.registered})")
            raise RateLimitExceededError(decision)
        return decision

    async def process_message(
        self,
        message: str,
        identity: Identity,
        quota_cookie: str | None = None,
        session_id: int | None = None,
        dispatch: Dispatch | None = None,
        decision: RateLimitDecision | None = None,
    ) -> ChatResult:
        """
        Answer one chat message.

        Args:
            message: The user's question
            identity: Resolved caller identity
            quota_cookie: Value of the anonymous ``q_used`` cookie, if any
            session_id: Conversation to continue, if any
            dispatch: Schedules recording after the response (e.g.
                ``BackgroundTasks.add_task``); recording is awaited inline when None
            decision: Admission already granted by :meth:`admit`; admits here when None

        Raises:
            RateLimitExceededError: If the caller's window is used up
            ProviderNotConfiguredError: If no provider credential is set
            UpstreamFailureError: If the provider call fails
            CacheUnavailableError: If the answer cache cannot be reached
        """
        if decision is None:
            decision = self.admit(identity)

        registered = identity.registered
        state = quota_tracker.read_token(quota_cookie)

        if quota_tracker.check_and_gate(registered, state.count).blocked:
            return self._signup_prompt(decision, state.count)

        slot = None
        if not registered:
            slot = quota_tracker.claim_slot(state)
            if slot is None:
                return self._signup_prompt(decision, state.count)

        try:
            answer, cached, tokens_used, elapsed_ms = await self._resolve_answer(message)
        except BaseException:
            # Also covers cancellation when the client goes away mid-answer.
            if slot is not None:
                self._release_slot(state, slot)
            raise

        if identity.user_id is not None:
            session_id = await conversation_recorder.try_ensure_session(
                identity.user_id, session_id, message
            )
            if session_id is not None:
                exchange = ExchangeMetadata(
                    tokens_used=tokens_used,
                    response_time_ms=elapsed_ms,
                    was_cached=cached,
                )
                args = (session_id, identity.user_id, message, answer, exchange)
                if dispatch is None:
                    await conversation_recorder.record_exchange(*args)
                else:
                    dispatch(conversation_recorder.record_exchange, *args)

        new_count = quota_tracker.next_count(registered, state.count, slot)
        quota_token = None
        if not registered:
            quota_token = quota_tracker.issue_token(QuotaState(new_count, state.token_id))

        return ChatResult(
            decision=decision,
            q_used=new_count,
            remaining=quota_tracker.remaining(registered, new_count),
            answer=answer,
            cached=cached,
            session_id=session_id,
            quota_token=quota_token,
        )

    async def _resolve_answer(self, message: str) -> tuple[str, bool, int, int]:
        """Return (answer, cached, tokens_used, elapsed_ms)."""
        if not llm_service.is_configured:
            logger.error("OPENAI_API_KEY not found in environment variables")
            raise ProviderNotConfiguredError("Provider credential missing")

        start_time = time.time()

        cached = answer_cache.lookup(message)
        if cached:
            elapsed_ms = int((time.time() - start_time) * 1000)
            metrics.record_cache_hit(elapsed_ms)
            logger.info(f"Cache hit (hit count: {cached.hit_count}): {message[:50]}...")
            return cached.answer, True, 0, elapsed_ms

        logger.info(f"Cache miss, calling LLM: {message[:50]}...")
        completion = await llm_service.complete(message)
        answer_cache.store(message, completion.answer)

        elapsed_ms = int((time.time() - start_time) * 1000)
        metrics.record_cache_miss(elapsed_ms, completion.tokens_used)
        return completion.answer, False, completion.tokens_used, elapsed_ms

    def _signup_prompt(self, decision: RateLimitDecision, q_used: int) -> ChatResult:
        metrics.record_signup_prompt()
        return ChatResult(decision=decision, q_used=q_used, remaining=0, need_signup=True)

    def _release_slot(self, state: QuotaState, slot: int) -> None:
        try:
            quota_tracker.release_slot(state, slot)
        except QuotaStoreError as e:
            logger.error(f"Could not release quota slot {slot}: {e}")


# Global instance
chat_orchestrator = ChatOrchestrator()
