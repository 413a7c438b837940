"""Shared pytest fixtures."""

import asyncio
import random
from collections.abc import Callable
from pathlib import Path

import pytest

from config.config_loader import DefaultsConfig, ModelConfig, PromptsConfig, load_config
from debate_arena.models import (
    DebateConfig,
    DebateContext,
    ModeratorIntervention,
    ModeratorStrictness,
    Position,
    RoundType,
    Statement,
)
from debate_arena.orchestrator import DebateOrchestrator
from debate_arena.prompts import TemplatePromptBuilder
from debate_arena.providers.base import ChunkCallback, ProviderError

SETTINGS_PATH = Path(__file__).parent.parent / "config" / "settings.yaml"


class MockProvider:
    """Test double ModelProvider.

    Args:
        name: Model name reported to the orchestrator.
        response: Text returned, or a callable (prompt, context) -> text.
        delay: Seconds to sleep before answering (spread across chunks when streaming).
        fail: Raise ProviderError on every call.
        error: Specific exception to raise instead of answering.
        streaming: Advertise and use streaming.
        fail_after_chunks: When streaming, raise after emitting this many chunks.
    """

    def __init__(
        self,
        name: str = "mock",
        response: str | Callable[[str, DebateContext], str] = "Mock response",
        *,
        delay: float = 0.0,
        fail: bool = False,
        error: Exception | None = None,
        streaming: bool = False,
        fail_after_chunks: int | None = None,
    ) -> None:
        self._name = name
        self.response = response
        self.delay = delay
        self.fail = fail
        self.error = error
        self.streaming = streaming
        self.fail_after_chunks = fail_after_chunks
        self.available = True
        self.calls = 0
        self.cancelled = 0
        self.prompts: list[str] = []
        self.contexts: list[DebateContext] = []

    def get_model_name(self) -> str:
        return self._name

    def supports_streaming(self) -> bool:
        return self.streaming

    def _text(self, prompt: str, context: DebateContext) -> str:
        self.calls += 1
        self.prompts.append(prompt)
        self.contexts.append(context)
        if callable(self.response):
            return self.response(prompt, context)
        return self.response

    def _raise_if_failing(self) -> None:
        if self.error is not None:
            raise self.error
        if self.fail:
            raise ProviderError(self._name, "Simulated failure")

    async def generate_response(self, prompt: str, context: DebateContext) -> str:
        text = self._text(prompt, context)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled += 1
            raise
        self._raise_if_failing()
        return text

    async def generate_response_stream(self, prompt: str, context: DebateContext, on_chunk: ChunkCallback) -> str:
        text = self._text(prompt, context)
        words = text.split(" ")
        chunks = [w + " " for w in words[:-1]] + [words[-1]] if text else []
        step = self.delay / max(1, len(chunks))
        emitted: list[str] = []
        try:
            for i, chunk in enumerate(chunks):
                if self.fail_after_chunks is not None and i >= self.fail_after_chunks:
                    raise ProviderError(self._name, "Stream dropped")
                if step:
                    await asyncio.sleep(step)
                emitted.append(chunk)
                on_chunk(chunk)
        except asyncio.CancelledError:
            self.cancelled += 1
            raise
        self._raise_if_failing()
        return "".join(emitted)

    async def validate_availability(self) -> bool:
        return self.available


class RecordingListener:
    """DebateListener that records every notification."""

    def __init__(self) -> None:
        self.phases: list[RoundType] = []
        self.chunks: list[tuple[str, Position, str]] = []
        self.completed: list[tuple[Statement, RoundType]] = []
        self.timeouts: list[tuple[str, Position, RoundType, str]] = []
        self.errors: list[tuple[str, Position, RoundType, Exception]] = []
        self.interventions: list[ModeratorIntervention] = []

    def on_phase_start(self, round_type: RoundType) -> None:
        self.phases.append(round_type)

    def on_chunk(self, model: str, position: Position, chunk: str) -> None:
        self.chunks.append((model, position, chunk))

    def on_complete(self, statement: Statement, round_type: RoundType) -> None:
        self.completed.append((statement, round_type))

    def on_timeout(self, model: str, position: Position, round_type: RoundType, partial: str) -> None:
        self.timeouts.append((model, position, round_type, partial))

    def on_error(self, model: str, position: Position, round_type: RoundType, error: Exception) -> None:
        self.errors.append((model, position, round_type, error))

    def on_intervention(self, intervention: ModeratorIntervention) -> None:
        self.interventions.append(intervention)


@pytest.fixture
def sample_model_config() -> ModelConfig:
    return ModelConfig(
        name="test_model",
        sdk="ollama",
        model="llama3.1",
        api_key_env=None,
        timeout_sec=30,
        max_tokens=1024,
        base_url="http://localhost:11434",
    )


@pytest.fixture
def prompts_config() -> PromptsConfig:
    return load_config(SETTINGS_PATH, env={}).prompts


@pytest.fixture
def prompt_builder(prompts_config: PromptsConfig) -> TemplatePromptBuilder:
    return TemplatePromptBuilder(prompts_config)


@pytest.fixture
def sample_defaults_config(tmp_path: Path) -> DefaultsConfig:
    return DefaultsConfig(
        time_limit=120,
        word_limit=500,
        strict_mode=False,
        show_preparation=True,
        preparation_time=180,
        num_cross_exam_questions=3,
        moderator_enabled=False,
        moderator_strictness=ModeratorStrictness.MODERATE,
        output_dir=tmp_path / "transcripts",
        debaters=["claude", "openai"],
    )


@pytest.fixture
def fast_config() -> DebateConfig:
    """Short limits so orchestrator tests finish quickly."""
    return DebateConfig(
        time_limit=2,
        word_limit=100,
        preparation_time=2,
        num_cross_exam_questions=1,
    )


@pytest.fixture
def listener() -> RecordingListener:
    return RecordingListener()


@pytest.fixture
def orchestrator(prompt_builder: TemplatePromptBuilder, listener: RecordingListener) -> DebateOrchestrator:
    return DebateOrchestrator(prompt_builder, listener=listener, rng=random.Random(7))


@pytest.fixture
def two_mock_providers() -> list[MockProvider]:
    return [MockProvider("provider_a", "Response from A"), MockProvider("provider_b", "Response from B")]
