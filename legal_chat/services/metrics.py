"""In-process counters for the chat pipeline."""

from dataclasses import dataclass, field
from threading import Lock


@dataclass
class Metrics:
    """Thread-safe metrics collector for answers, admission and recording."""

    _lock: Lock = field(default_factory=Lock, repr=False)
    total_answers: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    llm_calls: int = 0
    tokens_used: int = 0
    rate_limited: int = 0
    signup_prompts: int = 0
    errors: int = 0
    recording_failures: int = 0
    total_latency_ms: float = 0.0
    cache_latency_ms: float = 0.0
    llm_latency_ms: float = 0.0

    def record_cache_hit(self, latency_ms: float) -> None:
        with self._lock:
            self.total_answers += 1
            self.cache_hits += 1
            self.total_latency_ms += latency_ms
            self.cache_latency_ms += latency_ms

    def record_cache_miss(self, latency_ms: float, tokens_used: int) -> None:
        """Record an answer produced by the provider."""
        with self._lock:
            self.total_answers += 1
            self.cache_misses += 1
            self.llm_calls += 1
            self.tokens_used += tokens_used
            self.total_latency_ms += latency_ms
            self.llm_latency_ms += latency_ms

    def record_rate_limited(self) -> None:
        with self._lock:
            self.rate_limited += 1

    def record_signup_prompt(self) -> None:
        with self._lock:
            self.signup_prompts += 1

    def record_error(self) -> None:
        with self._lock:
            self.errors += 1

    def record_recording_failure(self) -> None:
        with self._lock:
            self.recording_failures += 1

    def get_stats(self) -> dict:
        with self._lock:
            hit_rate = (
                (self.cache_hits / self.total_answers * 100)
                if self.total_answers > 0
                else 0.0
            )
            avg_latency = (
                (self.total_latency_ms / self.total_answers)
                if self.total_answers > 0
                else 0.0
            )
            avg_cache_latency = (
                (self.cache_latency_ms / self.cache_hits)
                if self.cache_hits > 0
                else 0.0
            )
            avg_llm_latency = (
                (self.llm_latency_ms / self.llm_calls)
                if self.llm_calls > 0
                else 0.0
            )

            return {
                "total_answers": self.total_answers,
                "cache_hits": self.cache_hits,
                "cache_misses": self.cache_misses,
                "hit_rate_percent": round(hit_rate, 2),
                "llm_calls": self.llm_calls,
                "tokens_used": self.tokens_used,
                "rate_limited": self.rate_limited,
                "signup_prompts": self.signup_prompts,
                "errors": self.errors,
                "recording_failures": self.recording_failures,
                "latency": {
                    "avg_total_ms": round(avg_latency, 2),
                    "avg_cache_ms": round(avg_cache_latency, 2),
                    "avg_llm_ms": round(avg_llm_latency, 2),
                },
            }

    def reset(self) -> None:
        with self._lock:
            self.total_answers = 0
            self.cache_hits = 0
            self.cache_misses = 0
            self.llm_calls = 0
            self.tokens_used = 0
            self.rate_limited = 0
            self.signup_prompts = 0
            self.errors = 0
            self.recording_failures = 0
            self.total_latency_ms = 0.0
            self.cache_latency_ms = 0.0
            self.llm_latency_ms = 0.0


metrics = Metrics()
