"""Read a debate topic from markdown with optional YAML frontmatter."""

import logging
from pathlib import Path
from typing import Any

import frontmatter

logger = logging.getLogger(__name__)

# Frontmatter keys that map onto debate configuration overrides
OVERRIDE_KEYS = frozenset({
    "time_limit",
    "word_limit",
    "strict_mode",
    "preparation_time",
    "num_cross_exam_questions",
    "moderator_enabled",
    "moderator_strictness",
    "affirmative_personality",
    "negative_personality",
})


def parse_topic_file(file_path: Path) -> tuple[str, dict[str, Any], str | None]:
    """Parse a topic file.

    Returns:
        (topic, overrides, models) where overrides holds only recognised
        configuration keys and models is the optional comma-separated
        model list. If no frontmatter, overrides is {} and models is None.
    """
    post = frontmatter.load(str(file_path))
    topic = post.content.strip()
    metadata = dict(post.metadata)

    models = metadata.pop("models", None)
    if isinstance(models, list):
        models = ",".join(str(m) for m in models)

    overrides = {k: v for k, v in metadata.items() if k in OVERRIDE_KEYS}
    ignored = sorted(set(metadata) - OVERRIDE_KEYS)
    if ignored:
        logger.warning("Ignoring unknown frontmatter keys in %s: %s", file_path.name, ", ".join(ignored))
    return topic, overrides, str(models) if models is not None else None
