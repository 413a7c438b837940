"""Pick two distinct providers from a pool and assign them debate positions."""

import logging
import random
from collections.abc import Sequence

from debate_arena.errors import InsufficientModelsError
from debate_arena.models import PerPosition
from debate_arena.providers.base import ModelProvider

logger = logging.getLogger(__name__)


def select_models(
    pool: Sequence[ModelProvider], rng: random.Random | None = None
) -> tuple[ModelProvider, ModelProvider]:
    """Return two providers distinct by identity and by model name.

    Duplicates (same object, or same model name) are collapsed to their first
    occurrence before selection. With an rng, the pair is drawn at random;
    without one, the first two distinct providers are returned.

    Raises:
        InsufficientModelsError: If fewer than two distinct providers remain.
    """
    distinct: list[ModelProvider] = []
    seen_ids: set[int] = set()
    seen_names: set[str] = set()
    for provider in pool:
        name = provider.get_model_name()
        if id(provider) in seen_ids or name in seen_names:
            logger.debug("Skipping duplicate provider %s", name)
            continue
        seen_ids.add(id(provider))
        seen_names.add(name)
        distinct.append(provider)

    if len(distinct) < 2:
        raise InsufficientModelsError(len(distinct))

    if rng is None:
        return distinct[0], distinct[1]
    first, second = rng.sample(distinct, 2)
    return first, second


def assign_positions(
    model_a: ModelProvider, model_b: ModelProvider, rng: random.Random | None = None
) -> PerPosition[ModelProvider]:
    """Randomly assign affirmative/negative. Each provider gets exactly one position."""
    rng = rng or random.Random()
    if rng.random() < 0.5:
        assignment = PerPosition(affirmative=model_a, negative=model_b)
    else:
        assignment = PerPosition(affirmative=model_b, negative=model_a)
    logger.info(
        "Positions assigned: affirmative=%s, negative=%s",
        assignment.affirmative.get_model_name(),
        assignment.negative.get_model_name(),
    )
    return assignment
