"""Completion provider backed by the OpenAI chat completions API."""

import logging
from dataclasses import dataclass

import openai
from openai import AsyncOpenAI

from legal_chat.config import settings
from legal_chat.services.circuit_breaker import CircuitBreaker, CircuitOpenError

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "Tu es un assistant juridique spécialisé en droit du divorce français. "
    "Réponds de manière claire, précise et professionnelle. Donne des conseils "
    "juridiques généraux mais recommande toujours de consulter un avocat pour "
    "des cas spécifiques."
)

FALLBACK_ANSWER = "Désolé, je n'ai pas pu générer une réponse."


class ProviderNotConfiguredError(RuntimeError):
    """Raised when no provider API key is configured."""


class UpstreamFailureError(Exception):
    """Raised when the provider call fails."""


class LLMRateLimitError(UpstreamFailureError):
    """Raised when the provider rejects the call for rate limiting."""


@dataclass(frozen=True)
class Completion:
    answer: str
    tokens_used: int = 0


class LLMService:
    """Async OpenAI client wrapper with a fixed legal-assistant persona."""

    def __init__(self, api_key: str | None = None, model: str | None = None):
        self.api_key = api_key or settings.openai_api_key
        self.model = model or settings.openai_model
        self.client: AsyncOpenAI | None = None
        self.circuit = CircuitBreaker(
            name="llm",
            trips_on=(openai.APIError,),
            failure_threshold=settings.circuit_failure_threshold,
            recovery_timeout=settings.llm_recovery_seconds,
        )

    def initialize(self) -> None:
        if self.api_key:
            self.client = AsyncOpenAI(api_key=self.api_key)
        else:
            logger.warning("No OpenAI API key configured")

    @property
    def is_configured(self) -> bool:
        return self.client is not None

    async def complete(self, question: str) -> Completion:
        """
        Answer a question with the legal-assistant persona.

        Args:
            question: User question text

        Returns:
            Completion with the answer text and total tokens reported by the API

        Raises:
            ProviderNotConfiguredError: If no API key was configured
            UpstreamFailureError: If the circuit is open or the API call fails
        """
        if self.client is None:
            raise ProviderNotConfiguredError("LLM client not initialized. Check OPENAI_API_KEY.")

        try:
            with self.circuit.guard():
                response = await self.client.chat.completions.create(
                    model=self.model,
                    messages=[
                        {"role": "system", "content": SYSTEM_PROMPT},
                        {"role": "user", "content": question},
                    ],
                    temperature=settings.openai_temperature,
                    max_tokens=settings.openai_max_tokens,
                )
        except CircuitOpenError as e:
            raise UpstreamFailureError(str(e)) from e
        except openai.RateLimitError as e:
            logger.error(f"OpenAI rate limit error (status {e.status_code})")
            raise LLMRateLimitError("Provider rate limit exceeded") from e
        except openai.APIStatusError as e:
            # The response body may echo request content; log the status only.
            logger.error(f"OpenAI API error (status {e.status_code})")
            raise UpstreamFailureError(f"Provider returned status {e.status_code}") from e
        except openai.APIError as e:
            logger.error(f"OpenAI API error: {type(e).__name__}")
            raise UpstreamFailureError("Provider call failed") from e

        content = None
        if response.choices:
            content = response.choices[0].message.content
        if not content:
            logger.warning("Provider returned no answer text, using fallback")
            content = FALLBACK_ANSWER

        usage = getattr(response, "usage", None)
        tokens_used = getattr(usage, "total_tokens", None) or 0
        return Completion(answer=content, tokens_used=int(tokens_used))


llm_service = LLMService()
