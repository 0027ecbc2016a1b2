"""
OpenAI Provider - GPT client, and any OpenAI-compatible endpoint.

Setting OPENAI_BASE_URL points the same client at a compatible vendor (for
example DeepSeek), which is how alternative HTML models are plugged in
without another SDK.

The SDK's own retry loop is disabled (max_retries=0) so the single retry
policy in AIProvider is the only one in effect.

API Documentation: https://platform.openai.com/docs/api-reference
"""

import time
import logging
from typing import AsyncIterator, List, Optional

import openai
from openai import AsyncOpenAI

from app.core.config import settings
from app.core.errors import ErrorCode
from app.ai.providers.base import (
    AIProvider,
    AIResponse,
    ChatMessage,
    FinishReason,
    ProviderError,
    ProviderType,
    StreamChunk,
    TokenUsage,
)

logger = logging.getLogger("genui.ai.openai")


class OpenAIProvider(AIProvider):
    """
    OpenAI GPT provider implementation.

    Usage:
        provider = OpenAIProvider()
        response = await provider.generate("Describe a bakery brand")

        async for chunk in provider.stream(messages, system_prompt=system):
            ...
    """

    provider_type = ProviderType.OPENAI

    def __init__(
        self,
        model: str = None,
        api_key: str = None,
        base_url: str = None,
        timeout: Optional[float] = None,
        retry_delay: Optional[float] = None,
    ):
        """
        Initialize the OpenAI provider.

        Args:
            model: Model name (default: from settings.OPENAI_MODEL)
            api_key: API key (default: from settings.OPENAI_API_KEY)
            base_url: Compatible endpoint (default: settings.OPENAI_BASE_URL, empty = OpenAI)
        """
        super().__init__(timeout=timeout, retry_delay=retry_delay)
        self.model = model or settings.OPENAI_MODEL
        self.api_key = api_key or settings.OPENAI_API_KEY
        self.base_url = base_url or settings.OPENAI_BASE_URL or None

        if self.api_key:
            self._client = AsyncOpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                timeout=self.timeout,
                max_retries=0,
            )
            logger.info(f"OpenAI provider initialized with model: {self.model}")
        else:
            self._client = None
            logger.warning("OpenAI API key not configured - provider unavailable")

    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 1024,
        **kwargs
    ) -> AIResponse:
        """
        Generate a response using OpenAI GPT.

        Returns:
            AIResponse with the generated content
        """
        start_time = time.time()

        if not self._client:
            return self._create_error_response(
                error="OpenAI API key not configured",
                model=self.model,
                latency_ms=self._measure_latency(start_time)
            )

        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        try:
            response = await self._call_with_retry(
                lambda: self._client.chat.completions.create(
                    model=self.model,
                    messages=messages,
                    temperature=temperature,
                    max_tokens=max_tokens,
                )
            )
        except ProviderError as e:
            return self._create_error_response(
                error=f"{e.code.value}: {e.message}",
                model=self.model,
                latency_ms=self._measure_latency(start_time),
            )

        latency_ms = self._measure_latency(start_time)

        choice = response.choices[0]
        content = choice.message.content or ""

        usage = TokenUsage(
            prompt_tokens=response.usage.prompt_tokens if response.usage else 0,
            completion_tokens=response.usage.completion_tokens if response.usage else 0,
        )

        logger.info(f"OpenAI request completed in {latency_ms:.0f}ms, tokens: {usage.total_tokens}")

        return AIResponse(
            content=content,
            provider=self.provider_type,
            model=self.model,
            usage=usage,
            latency_ms=latency_ms,
            success=True,
            raw_response=response,
            metadata={"finish_reason": choice.finish_reason},
        )

    # ---------------------------------------------------------------------------
    # STREAMING
    # ---------------------------------------------------------------------------

    async def _open_stream(
        self,
        messages: List[ChatMessage],
        system_prompt: Optional[str],
        temperature: float,
        max_tokens: int,
    ) -> AsyncIterator[StreamChunk]:
        if not self._client:
            raise ProviderError(ErrorCode.API_ERROR, "OpenAI API key not configured")

        chat = []
        if system_prompt:
            chat.append({"role": "system", "content": system_prompt})
        chat.extend({"role": m["role"], "content": m["content"]} for m in messages)

        response_stream = await self._client.chat.completions.create(
            model=self.model,
            messages=chat,
            temperature=temperature,
            max_tokens=max_tokens,
            stream=True,
        )

        async for event in response_stream:
            if not event.choices:
                continue
            choice = event.choices[0]
            text = (choice.delta.content if choice.delta else None) or ""
            finish = None
            if choice.finish_reason == "length":
                finish = FinishReason.LENGTH
            elif choice.finish_reason:
                finish = FinishReason.STOP
            if text or finish:
                yield StreamChunk(text=text, finish_reason=finish)

    def _classify_error(self, error: Exception) -> ProviderError:
        if isinstance(error, ProviderError):
            return error
        # APITimeoutError subclasses APIConnectionError, so it is checked first
        if isinstance(error, openai.APITimeoutError):
            return ProviderError(ErrorCode.TIMEOUT, str(error), retryable=True)
        if isinstance(error, openai.APIConnectionError):
            return ProviderError(ErrorCode.API_ERROR, str(error), retryable=True)
        if isinstance(error, openai.APIStatusError):
            return ProviderError(
                ErrorCode.API_ERROR,
                f"{error.status_code}: {error.message}",
                retryable=error.status_code >= 500,
            )
        return ProviderError(ErrorCode.API_ERROR, str(error))


# ---------------------------------------------------------------------------
# SINGLETON INSTANCE
# ---------------------------------------------------------------------------
openai_provider = OpenAIProvider()
