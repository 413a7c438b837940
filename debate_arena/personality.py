"""Personality profiles: validation, generation, and preparation-time scaling."""

import logging
import math
import random
from collections.abc import Mapping, Sequence
from typing import Any

from debate_arena.errors import PersonalityValidationError
from debate_arena.models import DebateConfig, DebateTactic, PersonalityProfile

logger = logging.getLogger(__name__)

TRAITS = ("civility", "manner", "research_depth", "rhetoric_usage")

_HIGH_RESEARCH_DEPTH = 8
_LOW_RESEARCH_DEPTH = 2


def _is_valid_trait(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
        and 0 <= value <= 10
    )


def validate_profile(profile: PersonalityProfile | Mapping[str, Any]) -> tuple[list[str], list[str]]:
    """Validate a profile or raw mapping.

    Returns:
        (errors, invalid_params); both empty when the profile is valid.
    """
    raw: Mapping[str, Any]
    if isinstance(profile, PersonalityProfile):
        raw = {name: getattr(profile, name) for name in (*TRAITS, "tactics")}
    else:
        raw = profile

    errors: list[str] = []
    invalid: list[str] = []

    for trait in TRAITS:
        if raw.get(trait) is None:
            errors.append(f"{trait} dimension is required")
            invalid.append(trait)
        elif not _is_valid_trait(raw[trait]):
            errors.append(f"{trait} must be a number between 0 and 10")
            invalid.append(trait)

    tactics = raw.get("tactics")
    if tactics is None:
        errors.append("tactics list is required")
        invalid.append("tactics")
    elif isinstance(tactics, str) or not isinstance(tactics, Sequence):
        errors.append("tactics must be a list")
        invalid.append("tactics")
    else:
        valid_values = {t.value for t in DebateTactic}
        bad = [str(t) for t in tactics if not isinstance(t, DebateTactic) and t not in valid_values]
        if bad:
            errors.append(
                f"Invalid tactics: {', '.join(bad)}. Valid tactics are: {', '.join(sorted(valid_values))}"
            )
            invalid.append("tactics")

    return errors, invalid


def validate_profile_or_raise(profile: PersonalityProfile | Mapping[str, Any]) -> None:
    errors, invalid = validate_profile(profile)
    if errors:
        raise PersonalityValidationError.from_validation(errors, invalid)


def default_profile() -> PersonalityProfile:
    return PersonalityProfile()


def random_profile(rng: random.Random | None = None) -> PersonalityProfile:
    """Random traits in 0-10 and 0-3 distinct tactics."""
    rng = rng or random.Random()
    count = rng.randint(0, 3)
    if count == 0:
        tactics: tuple[DebateTactic, ...] = (DebateTactic.NONE,) if rng.random() < 0.5 else ()
    else:
        tactics = tuple(rng.sample(list(DebateTactic), count))
    profile = PersonalityProfile(
        civility=rng.randint(0, 10),
        manner=rng.randint(0, 10),
        research_depth=rng.randint(0, 10),
        rhetoric_usage=rng.randint(0, 10),
        tactics=tactics,
    )
    validate_profile_or_raise(profile)
    return profile


def resolve_personality(
    value: PersonalityProfile | Mapping[str, Any] | str | None,
    rng: random.Random | None = None,
) -> PersonalityProfile:
    """Turn a config value ('default', 'random', profile or mapping) into a validated profile.

    Raises:
        PersonalityValidationError: If the value is not a valid profile.
    """
    if value is None or value == "default":
        return default_profile()
    if value == "random":
        return random_profile(rng)
    if isinstance(value, str):
        raise PersonalityValidationError(
            f"Unknown personality '{value}'. Use 'default', 'random', or a full profile.",
            invalid_params=["personality"],
            validation_errors=[f"unknown personality preset: {value}"],
        )
    if isinstance(value, PersonalityProfile):
        validate_profile_or_raise(value)
        return value

    validate_profile_or_raise(value)
    return PersonalityProfile(
        civility=value["civility"],
        manner=value["manner"],
        research_depth=value["research_depth"],
        rhetoric_usage=value["rhetoric_usage"],
        tactics=tuple(DebateTactic(t) for t in value["tactics"]),
        name=value.get("name"),
        custom_instructions=value.get("custom_instructions"),
    )


def preparation_time_for_research_depth(base_time: float, research_depth: float) -> float:
    """x1.5 for depth >= 8, x0.8 for depth <= 2, unchanged otherwise (millisecond precision)."""
    if research_depth >= _HIGH_RESEARCH_DEPTH:
        return round(base_time * 1.5, 3)
    if research_depth <= _LOW_RESEARCH_DEPTH:
        return round(base_time * 0.8, 3)
    return base_time


def effective_preparation_time(
    config: DebateConfig, affirmative: PersonalityProfile, negative: PersonalityProfile
) -> float:
    """Preparation budget for the phase: the larger of the two scaled times."""
    scaled = max(
        preparation_time_for_research_depth(config.preparation_time, affirmative.research_depth),
        preparation_time_for_research_depth(config.preparation_time, negative.research_depth),
    )
    if scaled != config.preparation_time:
        logger.debug("Preparation time scaled from %ss to %ss by research depth", config.preparation_time, scaled)
    return scaled
