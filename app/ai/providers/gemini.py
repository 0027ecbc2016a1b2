"""
Gemini Provider - Google's GenAI SDK (google-genai).

Default model for both the brief and the HTML passes. Uses the async surface
of the SDK (client.aio) so a long HTML pass never blocks the event loop.
"""

import time
import logging
from typing import AsyncIterator, List, Optional

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

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

logger = logging.getLogger("genui.ai.gemini")


class GeminiProvider(AIProvider):
    provider_type = ProviderType.GEMINI

    def __init__(
        self,
        model: str = None,
        api_key: str = None,
        timeout: Optional[float] = None,
        retry_delay: Optional[float] = None,
    ):
        super().__init__(timeout=timeout, retry_delay=retry_delay)
        self.model = model or settings.GEMINI_MODEL
        self.api_key = api_key or settings.GEMINI_API_KEY

        if self.api_key:
            self._client = genai.Client(api_key=self.api_key)
            logger.info(f"Gemini provider initialized with model: {self.model}")
        else:
            self._client = None
            logger.warning("Gemini API key not configured")

    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 1024,
        **kwargs
    ) -> AIResponse:
        start_time = time.time()

        if not self._client:
            return self._error("API key missing", start_time)

        config = types.GenerateContentConfig(
            temperature=temperature,
            max_output_tokens=max_tokens,
            system_instruction=system_prompt,
        )

        try:
            response = await self._call_with_retry(
                lambda: self._client.aio.models.generate_content(
                    model=self.model,
                    contents=prompt,
                    config=config,
                )
            )
        except ProviderError as e:
            return self._error(f"{e.code.value}: {e.message}", start_time)

        latency_ms = self._measure_latency(start_time)
        usage = self._extract_usage(response)
        finish = self._finish_reason(response)

        return AIResponse(
            content=response.text or "",
            provider=self.provider_type,
            model=self.model,
            usage=usage,
            latency_ms=latency_ms,
            success=True,
            raw_response=response,
            metadata={"finish_reason": finish.value if finish else None},
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
            raise ProviderError(ErrorCode.API_ERROR, "Gemini API key not configured")

        config = types.GenerateContentConfig(
            temperature=temperature,
            max_output_tokens=max_tokens,
            system_instruction=system_prompt,
        )

        response_stream = await self._client.aio.models.generate_content_stream(
            model=self.model,
            contents=self._to_contents(messages),
            config=config,
        )

        async for response in response_stream:
            text = response.text or ""
            finish = self._finish_reason(response)
            if text or finish:
                yield StreamChunk(text=text, finish_reason=finish)

    def _classify_error(self, error: Exception) -> ProviderError:
        if isinstance(error, ProviderError):
            return error
        if isinstance(error, httpx.TimeoutException):
            return ProviderError(ErrorCode.TIMEOUT, str(error), retryable=True)
        if isinstance(error, genai_errors.ServerError):
            return ProviderError(ErrorCode.API_ERROR, f"{error.code}: {error.message}", retryable=True)
        if isinstance(error, genai_errors.APIError):
            return ProviderError(ErrorCode.API_ERROR, f"{error.code}: {error.message}")
        if isinstance(error, httpx.TransportError):
            return ProviderError(ErrorCode.API_ERROR, str(error), retryable=True)
        return ProviderError(ErrorCode.API_ERROR, str(error))

    # --- PRIVATE HELPERS ---

    @staticmethod
    def _to_contents(messages: List[ChatMessage]) -> List[types.Content]:
        # Gemini calls the assistant role "model"
        return [
            types.Content(
                role="model" if message["role"] == "assistant" else "user",
                parts=[types.Part(text=message["content"])],
            )
            for message in messages
        ]

    @staticmethod
    def _finish_reason(response) -> Optional[FinishReason]:
        if not response.candidates:
            return None
        reason = response.candidates[0].finish_reason
        if reason is None:
            return None
        if reason == types.FinishReason.MAX_TOKENS:
            return FinishReason.LENGTH
        return FinishReason.STOP

    def _extract_usage(self, response):
        # The SDK sometimes returns None when no usage is reported
        prompt_t = response.usage_metadata.prompt_token_count if response.usage_metadata else 0
        comp_t = response.usage_metadata.candidates_token_count if response.usage_metadata else 0
        return TokenUsage(prompt_tokens=prompt_t or 0, completion_tokens=comp_t or 0)

    def _error(self, msg, start_time):
        return self._create_error_response(
            error=msg, model=self.model, latency_ms=self._measure_latency(start_time)
        )


# Singleton instance
gemini_provider = GeminiProvider()
