"""
Embedding service: input normalisation plus retry with exponential backoff.

Retry policy: up to ``max_retries`` additional attempts. The first delay is
``initial_delay_ms`` and every further delay is multiplied by
``backoff_factor``. A cancel event is checked before every sleep; once set,
``AbortError`` is raised instead of sleeping.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..config import EmbeddingSettings
from ..errors import AbortError, ConfigurationError, ProviderError, ValidationError
from .providers import EmbeddingProvider

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]

# Cancellation and other BaseExceptions propagate immediately
RETRYABLE = retry_if_exception_type(Exception) & retry_if_not_exception_type((ConfigurationError, ValidationError))


class EmbeddingService:
    """Wraps an ``EmbeddingProvider`` with normalisation and retries."""

    def __init__(
        self,
        provider: EmbeddingProvider,
        max_retries: int = 3,
        initial_delay_ms: float = 500.0,
        backoff_factor: float = 2.0,
        cancel_event: asyncio.Event | None = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.provider = provider
        self.max_retries = max_retries
        self.initial_delay_ms = initial_delay_ms
        self.backoff_factor = backoff_factor
        self.cancel_event = cancel_event
        self._sleep = sleep

    @classmethod
    def from_settings(cls, provider: EmbeddingProvider, config: EmbeddingSettings, **kwargs) -> "EmbeddingService":
        return cls(
            provider,
            max_retries=config.max_retries,
            initial_delay_ms=config.initial_delay_ms,
            backoff_factor=config.backoff_factor,
            **kwargs,
        )

    async def generate(self, text: str) -> list[float]:
        """Embed one text. Empty or whitespace-only input raises ValidationError."""
        normalized = _normalize(text)
        if not normalized:
            raise ValidationError("Text cannot be empty")
        return await self._with_retry(lambda: self.provider.embed(normalized))

    async def generate_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed several texts; empty entries are dropped before the call."""
        normalized = [t for t in (_normalize(text) for text in texts) if t]
        if not normalized:
            return []
        return await self._with_retry(lambda: self.provider.embed_batch(normalized))

    async def generate_query(self, query: str) -> list[float]:
        """Embed a search query."""
        return await self.generate(query)

    async def _sleep_unless_cancelled(self, seconds: float) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise AbortError("Operation aborted")
        await self._sleep(seconds)

    async def _with_retry(self, call: Callable[[], Awaitable[T]]) -> T:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=self.initial_delay_ms / 1000.0, exp_base=self.backoff_factor),
            retry=RETRYABLE,
            sleep=self._sleep_unless_cancelled,
            before_sleep=_log_retry,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await call()
        except RetryError as e:
            raise ProviderError("Embedding generation failed after retries") from e
        raise ProviderError("Embedding generation failed after retries")


def _normalize(text: str | None) -> str:
    if not text or not isinstance(text, str):
        return ""
    return text.strip()


def _log_retry(retry_state) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        f"Embedding attempt {retry_state.attempt_number} failed "
        f"({type(exc).__name__}: {exc}); retrying in {retry_state.next_action.sleep:.2f}s"
    )
