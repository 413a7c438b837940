"""Exception taxonomy for the debate engine.

Provider failures live with the provider capability (providers/base.py).
Timeouts are never exceptions: see deadline.Cancelled.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from debate_arena.models import Debate


class DebateError(Exception):
    """Base class for all debate engine errors."""


class ConfigurationError(DebateError):
    """Raised when a topic or debate configuration fails validation."""

    def __init__(self, message: str, invalid_params: list[str] | None = None) -> None:
        self.invalid_params = list(invalid_params or [])
        super().__init__(message)


class InsufficientModelsError(DebateError):
    """Raised when fewer than two distinct providers are available."""

    def __init__(self, available: int) -> None:
        self.available = available
        super().__init__(
            f"Insufficient models available. Need at least 2 distinct models, but only {available} available."
        )


class InvalidTransitionError(DebateError):
    """Raised when a phase is executed out of order."""

    def __init__(self, current: str, requested: str, reason: str | None = None) -> None:
        self.current = current
        self.requested = requested
        message = f"Invalid state transition: cannot transition from {current} to {requested}"
        super().__init__(f"{message} ({reason})" if reason else message)


class DebateFailedError(DebateError):
    """Raised when a debate reaches the error state. Carries the terminal snapshot."""

    def __init__(self, message: str, debate: Debate) -> None:
        self.debate = debate
        super().__init__(message)


class PersonalityValidationError(DebateError):
    """Raised when a personality profile is invalid."""

    def __init__(
        self,
        message: str,
        invalid_params: list[str] | None = None,
        validation_errors: list[str] | None = None,
    ) -> None:
        self.invalid_params = list(invalid_params or [])
        self.validation_errors = list(validation_errors or [])
        super().__init__(message)

    @classmethod
    def from_validation(cls, errors: list[str], invalid_params: list[str]) -> PersonalityValidationError:
        return cls(f"Invalid personality profile: {'; '.join(errors)}", invalid_params, errors)

    def to_user_friendly_message(self) -> str:
        """Return the error with numbered issues and remediation hints."""
        lines = [f"Personality Profile Error: {self}", ""]
        if self.validation_errors:
            lines.append("Issues found:")
            lines += [f"  {i}. {err}" for i, err in enumerate(self.validation_errors, start=1)]
            lines.append("")
        if self.invalid_params:
            lines.append(f"Invalid parameters: {', '.join(dict.fromkeys(self.invalid_params))}")
            lines.append("")
        lines += [
            "How to fix:",
            "  - Ensure all trait values (civility, manner, research_depth, rhetoric_usage) "
            "are numbers between 0 and 10",
            "  - Ensure tactics is a list of valid debate tactics",
            "  - All required dimensions must be present",
        ]
        return "\n".join(lines)
