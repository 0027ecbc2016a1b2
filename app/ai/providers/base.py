"""
Base AI Provider - Abstract interface for all LLM providers.

This module defines the contract that all AI providers must follow.
It ensures consistent behavior regardless of which provider is used.

Design Pattern: Strategy Pattern
================================
The base class defines the interface, and each provider implements it.
The brief synthesizer and the refinement orchestrator only ever talk to
AIProvider, so switching vendors is a settings change.

Two ways to call a model:
- generate(): one-shot completion, returns AIResponse, NEVER raises
  (used for the brief, where any failure degrades to a default)
- stream(): async iterator of StreamChunk, RAISES ProviderError
  (used for HTML passes, where the caller owns the failure policy)

Upstream call policy (shared by both):
- Every call is bounded by `timeout` seconds; while streaming, the same bound
  applies to the gap between two chunks.
- A timeout or a 5xx is retried exactly once after a fixed `retry_delay`,
  and only if nothing has been emitted yet. A second failure is surfaced.

Example:
    provider = GeminiProvider()  # or OpenAIProvider()
    async for chunk in provider.stream([{"role": "user", "content": "Hi"}]):
        print(chunk.text, end="")
"""

import asyncio
import time
from abc import ABC, abstractmethod
from contextlib import aclosing
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, TypeVar
from enum import Enum
import logging

from app.core.config import settings
from app.core.errors import ErrorCode

# Configure logging for AI operations
logger = logging.getLogger("genui.ai")

T = TypeVar("T")

# A chat turn handed to stream(): {"role": "user" | "assistant", "content": "..."}
ChatMessage = Dict[str, str]


class ProviderType(str, Enum):
    """Enum of supported AI providers."""
    GEMINI = "gemini"
    OPENAI = "openai"


class FinishReason(str, Enum):
    """Vendor-neutral reason a stream ended."""
    STOP = "stop"
    LENGTH = "length"  # output cut at the token limit


@dataclass
class TokenUsage:
    """
    Token usage statistics for an AI request.

    Used for cost tracking (tokens = money) and performance monitoring.
    """
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def __post_init__(self):
        """Calculate total if not provided."""
        if self.total_tokens == 0:
            self.total_tokens = self.prompt_tokens + self.completion_tokens


@dataclass
class AIResponse:
    """
    Standardized response from any AI provider.

    Attributes:
        content: The generated text response
        provider: Which provider generated this response
        model: The specific model used
        usage: Token usage statistics
        latency_ms: How long the request took
        success: Whether the request succeeded
        error: Error message if failed
        raw_response: Original provider response (for debugging)
        metadata: Additional provider-specific data
        created_at: Timestamp of the response
    """
    content: str
    provider: ProviderType
    model: str
    usage: TokenUsage = field(default_factory=TokenUsage)
    latency_ms: float = 0.0
    success: bool = True
    error: Optional[str] = None
    raw_response: Optional[Any] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging. Content is never included."""
        return {
            "content_length": len(self.content),
            "provider": self.provider.value,
            "model": self.model,
            "tokens": {
                "prompt": self.usage.prompt_tokens,
                "completion": self.usage.completion_tokens,
                "total": self.usage.total_tokens,
            },
            "latency_ms": self.latency_ms,
            "success": self.success,
            "error": self.error,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class StreamChunk:
    """
    One incremental piece of a streamed completion.

    `finish_reason` is set on the last chunk only (it may carry empty text).
    """
    text: str
    finish_reason: Optional[FinishReason] = None

    @property
    def truncated(self) -> bool:
        return self.finish_reason == FinishReason.LENGTH


class ProviderError(Exception):
    """
    Raised by stream() when the upstream call cannot be completed.

    Attributes:
        code: ErrorCode.TIMEOUT or ErrorCode.API_ERROR
        retryable: True for timeouts, 5xx and connection failures
    """

    def __init__(self, code: ErrorCode, message: str, retryable: bool = False):
        super().__init__(message)
        self.code = code
        self.message = message
        self.retryable = retryable


class AIProvider(ABC):
    """
    Abstract base class for AI providers.

    Subclasses implement the vendor calls (_complete, _open_stream) and the
    error mapping (_classify_error). The timeout and retry policy lives here
    so every vendor behaves the same.
    """

    provider_type: ProviderType
    model: str

    def __init__(self, timeout: Optional[float] = None, retry_delay: Optional[float] = None):
        self.timeout = float(timeout if timeout is not None else settings.AI_REQUEST_TIMEOUT)
        self.retry_delay = float(
            retry_delay if retry_delay is not None else settings.AI_RETRY_DELAY_SECONDS
        )

    # ---------------------------------------------------------------------------
    # PUBLIC API
    # ---------------------------------------------------------------------------

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 1024,
        **kwargs
    ) -> AIResponse:
        """
        Generate a response from the AI model.

        Args:
            prompt: The user's message/query
            system_prompt: Optional system instructions for the model
            temperature: Creativity level (0=deterministic, 1=creative)
            max_tokens: Maximum tokens in the response

        Returns:
            AIResponse with the generated content

        Raises:
            This method should NOT raise exceptions.
            Errors are captured in AIResponse.error
        """
        pass

    async def stream(
        self,
        messages: List[ChatMessage],
        system_prompt: Optional[str] = None,
        temperature: float = 1.0,
        max_tokens: int = 16000,
    ) -> AsyncIterator[StreamChunk]:
        """
        Stream a completion chunk by chunk.

        Raises:
            ProviderError: on timeout or upstream failure (after the one retry)
        """
        attempt = 0
        while True:
            emitted = False
            try:
                async with aclosing(
                    self._bounded(self._open_stream(messages, system_prompt, temperature, max_tokens))
                ) as chunks:
                    async for chunk in chunks:
                        emitted = True
                        yield chunk
                return
            except ProviderError as e:
                if emitted or not e.retryable or attempt >= 1:
                    raise
                logger.warning(
                    f"{self.provider_type.value} stream failed before first chunk "
                    f"({e.code.value}), retrying in {self.retry_delay}s"
                )
            attempt += 1
            await asyncio.sleep(self.retry_delay)

    async def health_check(self) -> bool:
        """
        Check if the provider is available and configured.

        Returns:
            True if provider is ready to use, False otherwise
        """
        response = await self.generate(prompt="Say 'ok' and nothing else.", max_tokens=10)
        return response.success and len(response.content) > 0

    # ---------------------------------------------------------------------------
    # VENDOR HOOKS
    # ---------------------------------------------------------------------------

    @abstractmethod
    def _open_stream(
        self,
        messages: List[ChatMessage],
        system_prompt: Optional[str],
        temperature: float,
        max_tokens: int,
    ) -> AsyncIterator[StreamChunk]:
        """Vendor streaming call as an async generator of StreamChunk."""

    @abstractmethod
    def _classify_error(self, error: Exception) -> ProviderError:
        """Map an SDK exception onto ProviderError."""

    # ---------------------------------------------------------------------------
    # CALL POLICY HELPERS
    # ---------------------------------------------------------------------------

    async def _call_with_retry(self, call: Callable[[], Awaitable[T]]) -> T:
        """
        Await `call()` under the timeout, retrying once on a retryable failure.

        Raises:
            ProviderError: when both attempts fail or the failure is not retryable
        """
        attempt = 0
        while True:
            try:
                return await asyncio.wait_for(call(), timeout=self.timeout)
            except asyncio.TimeoutError:
                error = ProviderError(ErrorCode.TIMEOUT, "upstream call timed out", retryable=True)
            except ProviderError as e:
                error = e
            except Exception as e:
                error = self._classify_error(e)
            if not error.retryable or attempt >= 1:
                raise error
            logger.warning(
                f"{self.provider_type.value} call failed ({error.code.value}), "
                f"retrying in {self.retry_delay}s"
            )
            attempt += 1
            await asyncio.sleep(self.retry_delay)

    async def _bounded(self, source: AsyncIterator[StreamChunk]) -> AsyncIterator[StreamChunk]:
        """Apply the per-chunk timeout and error mapping to a vendor stream."""
        iterator = source.__aiter__()
        try:
            while True:
                try:
                    chunk = await asyncio.wait_for(iterator.__anext__(), timeout=self.timeout)
                except StopAsyncIteration:
                    return
                except asyncio.TimeoutError:
                    raise ProviderError(
                        ErrorCode.TIMEOUT, "no chunk received within timeout", retryable=True
                    )
                except ProviderError:
                    raise
                except Exception as e:
                    raise self._classify_error(e) from e
                yield chunk
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()

    def _measure_latency(self, start_time: float) -> float:
        """Calculate latency in milliseconds."""
        return (time.time() - start_time) * 1000

    def _create_error_response(
        self,
        error: str,
        model: str,
        latency_ms: float = 0.0
    ) -> AIResponse:
        """
        Create a standardized error response.

        Used when a provider fails to ensure consistent error handling.
        """
        logger.error(f"AI Provider Error [{self.provider_type.value}]: {error}")
        return AIResponse(
            content="",
            provider=self.provider_type,
            model=model,
            latency_ms=latency_ms,
            success=False,
            error=error,
        )
