"""Topic, configuration and response validation."""

import math

from debate_arena.models import DebateConfig, DebateTactic, ModeratorStrictness


def count_words(text: str) -> int:
    return len(text.split())


def validate_topic(topic: str | None) -> list[str]:
    """Return validation errors for a debate topic (empty list when valid)."""
    if not topic or not topic.strip():
        return ["Topic must contain at least one non-whitespace character"]
    return []


def _is_positive_number(value: object) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
        and value > 0
    )


def validate_config(config: DebateConfig) -> tuple[list[str], list[str]]:
    """Check every field against its contractual range.

    Returns:
        (errors, invalid_params); both empty when the config is valid.
    """
    errors: list[str] = []
    invalid: list[str] = []

    if not _is_positive_number(config.time_limit):
        errors.append("time_limit must be a positive finite number")
        invalid.append("time_limit")

    if config.word_limit is not None and (
        not isinstance(config.word_limit, int) or isinstance(config.word_limit, bool) or config.word_limit <= 0
    ):
        errors.append("word_limit must be a positive integer")
        invalid.append("word_limit")

    if not _is_positive_number(config.preparation_time):
        errors.append("preparation_time must be a positive finite number")
        invalid.append("preparation_time")

    if (
        not isinstance(config.num_cross_exam_questions, int)
        or isinstance(config.num_cross_exam_questions, bool)
        or config.num_cross_exam_questions < 0
    ):
        errors.append("num_cross_exam_questions must be a non-negative integer")
        invalid.append("num_cross_exam_questions")

    for name in ("strict_mode", "show_preparation", "moderator_enabled", "stream_output"):
        if not isinstance(getattr(config, name), bool):
            errors.append(f"{name} must be a boolean")
            invalid.append(name)

    if not isinstance(config.moderator_strictness, ModeratorStrictness):
        errors.append(
            f"moderator_strictness must be one of: {', '.join(s.value for s in ModeratorStrictness)}"
        )
        invalid.append("moderator_strictness")

    for name in ("allowed_tactics", "forbidden_tactics"):
        tactics = getattr(config, name)
        if not all(isinstance(t, DebateTactic) for t in tactics):
            errors.append(f"{name} must contain only valid debate tactics")
            invalid.append(name)

    overlap = set(config.allowed_tactics) & set(config.forbidden_tactics)
    if overlap:
        names = ", ".join(sorted(t.value for t in overlap))
        errors.append(f"tactics cannot be both allowed and forbidden: {names}")
        invalid.append("forbidden_tactics")

    return errors, invalid


def enforce_word_limit(text: str, word_limit: int | None) -> tuple[str, bool]:
    """Truncate text to word_limit words, appending '...'.

    Returns:
        (text, truncated)
    """
    if not word_limit or word_limit <= 0:
        return text, False
    words = text.split()
    if len(words) <= word_limit:
        return text, False
    return " ".join(words[:word_limit]) + "...", True
