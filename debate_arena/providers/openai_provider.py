"""OpenAI provider using openai SDK with native async. Also serves OpenAI-compatible hosts via base_url."""

import asyncio
import logging
import time

from openai import AsyncOpenAI

from config.config_loader import ModelConfig
from debate_arena.models import DebateContext
from debate_arena.providers.base import ChunkCallback, ProviderError, format_context

logger = logging.getLogger(__name__)

_PING_PROMPT = "Reply with the word OK only."


class OpenAIProvider:
    """OpenAI provider via openai SDK."""

    def __init__(self, config: ModelConfig, api_key: str) -> None:
        self._config = config
        if not api_key.strip():
            raise ProviderError(config.name, f"Missing API key: {config.api_key_env}")
        self._client = AsyncOpenAI(api_key=api_key.strip(), base_url=config.base_url)

    def get_model_name(self) -> str:
        return self._config.name

    def supports_streaming(self) -> bool:
        return True

    def _messages(self, prompt: str, context: DebateContext) -> list[dict[str, str]]:
        system, user = format_context(prompt, context)
        return [{"role": "system", "content": system}, {"role": "user", "content": user}]

    async def generate_response(self, prompt: str, context: DebateContext) -> str:
        start = time.monotonic()
        try:
            response = await asyncio.wait_for(
                self._client.chat.completions.create(
                    model=self._config.model,
                    messages=self._messages(prompt, context),
                    max_tokens=self._config.max_tokens,
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

        choice = response.choices[0] if response.choices else None
        if not choice or not choice.message.content:
            raise ProviderError(self._config.name, "Empty response content")

        token_count: int | None = None
        if response.usage:
            token_count = response.usage.total_tokens

        logger.info("OpenAI %s: %.2fs, %s tokens", context.round_type.value, latency, token_count)
        return choice.message.content

    async def generate_response_stream(self, prompt: str, context: DebateContext, on_chunk: ChunkCallback) -> str:
        parts: list[str] = []

        async def consume() -> None:
            stream = await self._client.chat.completions.create(
                model=self._config.model,
                messages=self._messages(prompt, context),
                max_tokens=self._config.max_tokens,
                stream=True,
            )
            async for chunk in stream:
                if not chunk.choices:
                    continue
                text = chunk.choices[0].delta.content
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
        logger.info("OpenAI %s stream: %.2fs, %d chars", context.round_type.value, time.monotonic() - start, len(content))
        return content

    async def validate_availability(self) -> bool:
        try:
            await asyncio.wait_for(
                self._client.chat.completions.create(
                    model=self._config.model,
                    messages=[{"role": "user", "content": _PING_PROMPT}],
                    max_tokens=5,
                ),
                timeout=self._config.timeout_sec,
            )
        except Exception as exc:
            logger.warning("OpenAI provider %s unavailable: %s", self._config.name, exc)
            return False
        return True
