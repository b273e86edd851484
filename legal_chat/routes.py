"""API routes for the chat service."""

import logging

from fastapi import APIRouter, BackgroundTasks, Cookie, Depends, HTTPException, Response

from legal_chat.config import settings
from legal_chat.identity import Identity, resolve_identity
from legal_chat.schemas import (
    ChatRequest,
    ChatResponse,
    ErrorResponse,
    HealthResponse,
    RateLimitedResponse,
    SignupRequiredResponse,
    StatsResponse,
)
from legal_chat.services.cache import answer_cache
from legal_chat.services.chat import chat_orchestrator
from legal_chat.services.circuit_breaker import CircuitBreaker
from legal_chat.services.llm import (
    ProviderNotConfiguredError,
    UpstreamFailureError,
    llm_service,
)
from legal_chat.services.metrics import metrics
from legal_chat.services.quota import QUOTA_COOKIE, quota_tracker
from legal_chat.services.rate_limit import (
    RateLimitExceededError,
    anonymous_limiter,
    registered_limiter,
)

logger = logging.getLogger(__name__)

router = APIRouter()

RATE_LIMITED_MESSAGE = "Trop de requêtes. Veuillez réessayer plus tard."
SIGNUP_MESSAGE = (
    "Vous avez utilisé vos {limit} questions gratuites. Inscrivez-vous pour continuer."
)
CONFIG_MISSING_MESSAGE = "Configuration manquante. Veuillez contacter l'administrateur."
GENERATION_FAILED_MESSAGE = "Erreur lors de la génération de la réponse. Veuillez réessayer."
INTERNAL_ERROR_MESSAGE = "Erreur interne du serveur"


@router.post(
    "/api/chat",
    response_model=ChatResponse | SignupRequiredResponse,
    responses={
        422: {"description": "Invalid request"},
        429: {"model": RateLimitedResponse, "description": "Rate limit exceeded"},
        500: {"model": ErrorResponse, "description": "Internal server error"},
    },
)
async def chat(
    request: ChatRequest,
    response: Response,
    background_tasks: BackgroundTasks,
    identity: Identity = Depends(resolve_identity),
    q_used: str | None = Cookie(default=None),
) -> ChatResponse | SignupRequiredResponse:
    """
    Answer a legal question.

    Anonymous callers get a limited number of free questions tracked in the
    ``q_used`` cookie. Registered callers have their exchange recorded in a
    conversation session whose id is returned for follow-up questions.
    """
    try:
        decision = chat_orchestrator.admit(identity)
    except RateLimitExceededError as e:
        decision = e.decision
        raise HTTPException(
            status_code=429,
            detail=RateLimitedResponse(
                error=RATE_LIMITED_MESSAGE,
                limit=decision.limit,
                remaining=decision.remaining,
                reset=decision.reset_at,
                retryAfter=decision.retry_after,
            ).model_dump(),
            headers={**decision.headers(), "Retry-After": str(decision.retry_after)},
        )
    except Exception as e:
        metrics.record_error()
        logger.exception(f"Rate limit check failed: {e}")
        raise HTTPException(status_code=500, detail=INTERNAL_ERROR_MESSAGE)

    # Admitted: every response from here on reports the caller's usage.
    usage_headers = decision.headers()
    try:
        result = await chat_orchestrator.process_message(
            message=request.message,
            identity=identity,
            quota_cookie=q_used,
            session_id=request.sessionId,
            dispatch=background_tasks.add_task,
            decision=decision,
        )
    except ProviderNotConfiguredError:
        metrics.record_error()
        raise HTTPException(status_code=500, detail=CONFIG_MISSING_MESSAGE, headers=usage_headers)
    except UpstreamFailureError as e:
        metrics.record_error()
        logger.error(f"Answer generation failed: {e}")
        raise HTTPException(
            status_code=500, detail=GENERATION_FAILED_MESSAGE, headers=usage_headers
        )
    except Exception as e:
        metrics.record_error()
        logger.exception(f"Unexpected error processing chat message: {e}")
        raise HTTPException(status_code=500, detail=INTERNAL_ERROR_MESSAGE, headers=usage_headers)

    response.headers.update(usage_headers)

    if result.need_signup:
        return SignupRequiredResponse(
            message=SIGNUP_MESSAGE.format(limit=settings.free_question_limit),
            qUsed=result.q_used,
        )

    if result.quota_token:
        response.set_cookie(
            QUOTA_COOKIE,
            result.quota_token,
            max_age=settings.quota_token_ttl_seconds,
            httponly=True,
            samesite="lax",
            secure=settings.cookie_secure,
        )

    return ChatResponse(
        response=result.answer,
        qUsed=result.q_used,
        remaining=result.remaining,
        cached=result.cached,
        sessionId=result.session_id,
    )


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(status="ok")


@router.get("/api/stats", response_model=StatsResponse)
async def stats() -> StatsResponse:
    """Answer pipeline statistics since process start."""
    return StatsResponse(**metrics.get_stats())


def all_circuits() -> list[CircuitBreaker]:
    """Breakers owned by the provider and each Redis-backed service."""
    return [
        llm_service.circuit,
        answer_cache.circuit,
        anonymous_limiter.circuit,
        registered_limiter.circuit,
        quota_tracker.circuit,
    ]


@router.get("/api/circuits")
async def circuits() -> dict:
    """Circuit breaker status per dependency."""
    return {breaker.name: breaker.get_status() for breaker in all_circuits()}
