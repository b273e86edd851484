"""Pydantic models for API request/response validation."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class ChatRequest(BaseModel):
    """Request body for the chat endpoint."""

    message: str = Field(..., min_length=1, description="The user's legal question")
    sessionId: int | None = Field(
        default=None,
        description="Conversation to continue; a new one is started when omitted",
    )

    @field_validator("message")
    @classmethod
    def message_must_not_be_whitespace_only(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Message cannot be empty or whitespace-only")
        return v


class ChatResponse(BaseModel):
    """Successful answer."""

    success: bool = True
    response: str = Field(..., description="The answer text")
    qUsed: int = Field(..., description="Free questions consumed so far")
    remaining: int | str = Field(..., description='Free questions left, or "unlimited"')
    cached: bool = Field(..., description="Whether the answer came from the cache")
    sessionId: int | None = Field(
        default=None, description="Conversation the exchange was recorded in"
    )


class SignupRequiredResponse(BaseModel):
    """Returned with HTTP 200 once the anonymous free quota is used up."""

    success: bool = False
    needSignup: bool = True
    message: str
    qUsed: int
    remaining: int = 0


class RateLimitedResponse(BaseModel):
    error: str
    limit: int
    remaining: int
    reset: int = Field(..., description="Unix time the window resets")
    retryAfter: int = Field(..., description="Seconds to wait before retrying")


class ErrorResponse(BaseModel):
    """Error response body."""

    error: str = Field(..., description="Error message")


class HealthResponse(BaseModel):
    status: str = Field(default="ok")


class LatencyStats(BaseModel):
    avg_total_ms: float
    avg_cache_ms: float
    avg_llm_ms: float


class StatsResponse(BaseModel):
    """Answer pipeline statistics."""

    total_answers: int
    cache_hits: int
    cache_misses: int
    hit_rate_percent: float
    llm_calls: int
    tokens_used: int
    rate_limited: int
    signup_prompts: int
    errors: int
    recording_failures: int
    latency: LatencyStats


# --- Conversation history ---


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        from_attributes=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


class SessionOut(_CamelModel):
    id: int
    title: str
    started_at: datetime
    last_message_at: datetime
    message_count: int


class MessageOut(_CamelModel):
    id: int
    role: str
    content: str
    created_at: datetime
    tokens_used: int
    response_time_ms: int | None = None
    was_cached: bool


class SessionListResponse(_CamelModel):
    success: bool = True
    sessions: list[SessionOut]
    count: int


class SessionMessagesResponse(_CamelModel):
    success: bool = True
    session_id: int
    messages: list[MessageOut]


class ConversationStats(_CamelModel):
    total_sessions: int
    total_messages: int
    total_tokens: int
    cached_answers: int


class ConversationStatsResponse(_CamelModel):
    success: bool = True
    stats: ConversationStats


class UpdateTitleRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)


class ActionResponse(BaseModel):
    success: bool = True
    message: str
