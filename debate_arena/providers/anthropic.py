"""Anthropic Claude provider using anthropic SDK with native async."""

import asyncio
import logging
import time

import anthropic as anthropic_sdk

from config.config_loader import ModelConfig
from debate_arena.models import DebateContext
from debate_arena.providers.base import ChunkCallback, ProviderError, format_context

logger = logging.getLogger(__name__)

_PING_PROMPT = "Reply with the word OK only."


class AnthropicProvider:
    """Anthropic Claude provider via anthropic SDK."""

    def __init__(self, config: ModelConfig, api_key: str) -> None:
        self._config = config
        if not api_key.strip():
            raise ProviderError(config.name, f"Missing API key: {config.api_key_env}")
        self._client = anthropic_sdk.AsyncAnthropic(api_key=api_key.strip())

    def get_model_name(self) -> str:
        return self._config.name

    def supports_streaming(self) -> bool:
        return True

    async def generate_response(self, prompt: str, context: DebateContext) -> str:
        system, user = format_context(prompt, context)
        start = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self._client.messages.create(
                    model=self._config.model,
                    max_tokens=self._config.max_tokens,
                    system=system,
                    messages=[{"role": "user", "content": user}],
                ),
                timeout=self._config.timeout_sec,
            )
        except TimeoutError as exc:
            raise ProviderError(
                self._config.name, f"Request timed out after {self._config.timeout_sec}s", timed_out=True
            ) from exc
        except Exception as exc:
            raise ProviderError(self._config.name, f"API call failed: {exc}") from exc

        latency = time.monotonic() - start

        if not response.content:
            raise ProviderError(self._config.name, "Empty response content")

        text_blocks = [b.text for b in response.content if b.type == "text"]
        if not text_blocks:
            raise ProviderError(self._config.name, "No text blocks in response")

        token_count: int | None = None
        if response.usage:
            token_count = response.usage.input_tokens + response.usage.output_tokens

        logger.info("Anthropic %s: %.2fs, %s tokens", context.round_type.value, latency, token_count)
        return "\n".join(text_blocks)

    async def generate_response_stream(self, prompt: str, context: DebateContext, on_chunk: ChunkCallback) -> str:
        system, user = format_context(prompt, context)
        parts: list[str] = []

        async def consume() -> None:
            async with self._client.messages.stream(
                model=self._config.model,
                max_tokens=self._config.max_tokens,
                system=system,
                messages=[{"role": "user", "content": user}],
            ) as stream:
                async for text in stream.text_stream:
                    if text:
                        parts.append(text)
                        on_chunk(text)

        start = time.monotonic()
        try:
            await asyncio.wait_for(consume(), timeout=self._config.timeout_sec)
        except TimeoutError as exc:
            raise ProviderError(
                self._config.name, f"Stream timed out after {self._config.timeout_sec}s", timed_out=True
            ) from exc
        except Exception as exc:
            raise ProviderError(self._config.name, f"Streaming failed: {exc}") from exc

        content = "".join(parts)
        if not content:
            raise ProviderError(self._config.name, "Empty response content")
        logger.info("Anthropic %s stream: %.2fs, %d chars", context.round_type.value, time.monotonic() - start, len(content))
        return content

    async def validate_availability(self) -> bool:
        try:
            await asyncio.wait_for(
                self._client.messages.create(
                    model=self._config.model,
                    max_tokens=5,
                    messages=[{"role": "user", "content": _PING_PROMPT}],
                ),
                timeout=self._config.timeout_sec,
            )
        except Exception as exc:
            logger.warning("Anthropic provider %s unavailable: %s", self._config.name, exc)
            return False
        return True
