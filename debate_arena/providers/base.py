"""The model provider capability every back end satisfies."""

from collections.abc import Callable
from typing import Protocol, runtime_checkable

from debate_arena.models import DebateContext, Position

ChunkCallback = Callable[[str], None]


class ProviderError(Exception):
    """Raised when a provider call fails."""

    def __init__(self, provider_name: str, message: str, *, timed_out: bool = False) -> None:
        self.provider_name = provider_name
        self.timed_out = timed_out
        super().__init__(f"[{provider_name}] {message}")


@runtime_checkable
class ModelProvider(Protocol):
    """Capability consumed by the orchestrator. Adapters implement it structurally."""

    def get_model_name(self) -> str:
        """Return the display name used in statements and transcripts."""
        ...

    def supports_streaming(self) -> bool:
        ...

    async def generate_response(self, prompt: str, context: DebateContext) -> str:
        """Generate a complete response.

        Raises:
            ProviderError: On API failure, timeout, or invalid response.
        """
        ...

    async def generate_response_stream(
        self, prompt: str, context: DebateContext, on_chunk: ChunkCallback
    ) -> str:
        """Generate a response, calling on_chunk for each piece of text.

        The chunks concatenate exactly to the returned text; no chunk is
        emitted for empty output.

        Raises:
            ProviderError: On API failure, timeout, or invalid response.
        """
        ...

    async def validate_availability(self) -> bool:
        """Return True if the back end is reachable and configured."""
        ...


def format_context(prompt: str, context: DebateContext) -> tuple[str, str]:
    """Split a debate turn into (system, user) text for chat-style back ends."""
    if context.position is None:
        system = (
            f'You are the neutral moderator of a formal debate on the topic: "{context.topic}".\n'
            f"Current round: {context.round_type.value}"
        )
    else:
        stance = "in favor of" if context.position is Position.AFFIRMATIVE else "against"
        system = (
            f'You are participating in a formal debate, arguing {stance} the topic: "{context.topic}".\n'
            f"Current round: {context.round_type.value}\n"
            f"Your position: {context.position.value}"
        )
    if context.personality_reminder:
        system += f"\n\n{context.personality_reminder}"
    if context.preparation_material:
        system += f"\n\nYour preparation materials:\n{context.preparation_material}"

    user = ""
    if context.previous_statements:
        parts = [
            f"[{s.position.value.upper()} - {s.model}]:\n{s.content}"
            for s in context.previous_statements
            if s.content
        ]
        if parts:
            user = "Previous statements in this debate:\n\n" + "\n\n".join(parts) + "\n\n---\n\n"
    return system, user + prompt
