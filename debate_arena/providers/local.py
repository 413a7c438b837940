"""Local model server provider over plain HTTP (httpx).

Two wire styles are supported, chosen by the model's ``sdk`` key:
``ollama`` (``/api/generate``, NDJSON streaming) and ``openai_compatible``
(``/v1/chat/completions``, SSE streaming; LM Studio, llama.cpp, vLLM).
"""

import json
import logging
import time
from typing import Any

import httpx

from config.config_loader import ModelConfig
from debate_arena.models import DebateContext
from debate_arena.providers.base import ChunkCallback, ProviderError, format_context

logger = logging.getLogger(__name__)

OLLAMA = "ollama"
OPENAI_COMPATIBLE = "openai_compatible"


class LocalModelProvider:
    """Provider for a model served on the local network."""

    def __init__(
        self,
        config: ModelConfig,
        api_key: str = "",
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        if config.sdk not in (OLLAMA, OPENAI_COMPATIBLE):
            raise ProviderError(config.name, f"Unsupported local server type: {config.sdk}")
        if not config.base_url:
            raise ProviderError(config.name, "base_url is required for local models")
        headers = {"Authorization": f"Bearer {api_key.strip()}"} if api_key.strip() else None
        self._client = httpx.AsyncClient(
            base_url=config.base_url.rstrip("/"),
            timeout=float(config.timeout_sec),
            headers=headers,
            transport=transport,
        )

    def get_model_name(self) -> str:
        return self._config.name

    def supports_streaming(self) -> bool:
        return True

    async def aclose(self) -> None:
        await self._client.aclose()

    def _request(self, prompt: str, context: DebateContext, stream: bool) -> tuple[str, dict[str, Any]]:
        system, user = format_context(prompt, context)
        if self._config.sdk == OLLAMA:
            return "/api/generate", {
                "model": self._config.model,
                "system": system,
                "prompt": user,
                "stream": stream,
                "options": {"num_predict": self._config.max_tokens},
            }
        return "/v1/chat/completions", {
            "model": self._config.model,
            "messages": [{"role": "system", "content": system}, {"role": "user", "content": user}],
            "max_tokens": self._config.max_tokens,
            "stream": stream,
        }

    def _error(self, exc: Exception) -> ProviderError:
        if isinstance(exc, httpx.TimeoutException):
            return ProviderError(self._config.name, f"Request timed out after {self._config.timeout_sec}s", timed_out=True)
        if isinstance(exc, httpx.HTTPStatusError):
            return ProviderError(self._config.name, f"HTTP {exc.response.status_code} from local server")
        if isinstance(exc, httpx.HTTPError):
            return ProviderError(self._config.name, f"Connection to {self._config.base_url} failed: {exc}")
        return ProviderError(self._config.name, f"Invalid response: {exc}")

    def _parse_chunk(self, line: str) -> str | None:
        """Text carried by one streamed line, or None for control lines."""
        line = line.strip()
        if not line:
            return None
        if self._config.sdk == OLLAMA:
            return json.loads(line).get("response") or None
        if not line.startswith("data:"):
            return None
        data = line[len("data:"):].strip()
        if data == "[DONE]":
            return None
        choices = json.loads(data).get("choices") or []
        if not choices:
            return None
        return (choices[0].get("delta") or {}).get("content") or None

    async def generate_response(self, prompt: str, context: DebateContext) -> str:
        path, body = self._request(prompt, context, stream=False)
        start = time.monotonic()
        try:
            response = await self._client.post(path, json=body)
            response.raise_for_status()
            payload = response.json()
            if self._config.sdk == OLLAMA:
                content = payload.get("response", "")
            else:
                choices = payload.get("choices") or []
                content = choices[0]["message"]["content"] if choices else ""
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as exc:
            raise self._error(exc) from exc

        if not content:
            raise ProviderError(self._config.name, "Empty response content")
        logger.info("Local %s %s: %.2fs", self._config.sdk, context.round_type.value, time.monotonic() - start)
        return content

    async def generate_response_stream(self, prompt: str, context: DebateContext, on_chunk: ChunkCallback) -> str:
        path, body = self._request(prompt, context, stream=True)
        parts: list[str] = []
        start = time.monotonic()
        try:
            async with self._client.stream("POST", path, json=body) as response:
                response.raise_for_status()
                async for line in response.aiter_lines():
                    text = self._parse_chunk(line)
                    if text:
                        parts.append(text)
                        on_chunk(text)
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as exc:
            raise self._error(exc) from exc

        content = "".join(parts)
        if not content:
            raise ProviderError(self._config.name, "Empty response content")
        logger.info("Local %s %s stream: %.2fs, %d chars", self._config.sdk, context.round_type.value,
                    time.monotonic() - start, len(content))
        return content

    async def validate_availability(self) -> bool:
        path = "/api/tags" if self._config.sdk == OLLAMA else "/v1/models"
        try:
            response = await self._client.get(path)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.debug("Local server health check failed for %s: %s", self._config.name, exc)
            return False
        if self._config.sdk == OLLAMA:
            names = {m.get("name", "") for m in payload.get("models", [])}
            # Ollama lists tagged names (llama3.1:latest)
            if not any(n == self._config.model or n.split(":")[0] == self._config.model for n in names):
                logger.warning("Model %s is not pulled on %s", self._config.model, self._config.base_url)
                return False
        return True
