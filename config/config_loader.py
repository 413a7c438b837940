"""Load settings.yaml into typed dataclasses and resolve per-debate configuration."""

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from debate_arena.models import DebateConfig, DebateTactic, ModeratorStrictness

logger = logging.getLogger(__name__)

_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass
class ModelConfig:
    name: str
    sdk: str
    model: str
    api_key_env: str | None
    timeout_sec: int
    max_tokens: int
    base_url: str | None = None


@dataclass
class PromptsConfig:
    debater: str
    preparation: str
    opening: str
    rebuttal: str
    cross_exam_question: str
    cross_exam_answer: str
    closing: str
    moderator_summary: str


@dataclass
class ModeratorRulesConfig:
    stay_on_topic: bool = True
    no_personal_attacks: bool = True
    cite_sources: bool = False
    allowed_tactics: list[DebateTactic] = field(default_factory=list)
    forbidden_tactics: list[DebateTactic] = field(default_factory=list)


@dataclass
class DefaultsConfig:
    time_limit: float
    word_limit: int | None
    strict_mode: bool
    show_preparation: bool
    preparation_time: float
    num_cross_exam_questions: int
    moderator_enabled: bool
    moderator_strictness: ModeratorStrictness
    output_dir: Path
    debaters: list[str] = field(default_factory=list)
    moderator_model: str | None = None
    affirmative_personality: str = "default"
    negative_personality: str = "default"
    health_check_timeout_sec: float = 15.0


@dataclass
class AppConfig:
    defaults: DefaultsConfig
    models: dict[str, ModelConfig]
    prompts: PromptsConfig
    moderator_rules: ModeratorRulesConfig = field(default_factory=ModeratorRulesConfig)
    available_providers: set[str] = field(default_factory=set)


def _parse_tactics(values: list[str] | None, key: str) -> list[DebateTactic]:
    tactics: list[DebateTactic] = []
    for value in values or []:
        try:
            tactics.append(DebateTactic(value))
        except ValueError:
            logger.warning("Unknown tactic %r in moderator_rules.%s, ignoring", value, key)
    return tactics


def load_config(settings_path: Path = _SETTINGS_PATH, env: Mapping[str, str] | None = None) -> AppConfig:
    """Load and validate configuration from settings.yaml.

    Args:
        settings_path: YAML settings file.
        env: Environment used to decide which providers have API keys.
            Models without an api_key_env (local servers) are always available.

    Raises FileNotFoundError if settings file missing.
    Logs missing API keys but does not raise; callers check available_providers.
    """
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    env = env or {}

    with settings_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    defaults_raw = raw["defaults"]
    word_limit = defaults_raw.get("word_limit")
    defaults = DefaultsConfig(
        time_limit=float(defaults_raw["time_limit"]),
        word_limit=int(word_limit) if word_limit is not None else None,
        strict_mode=bool(defaults_raw.get("strict_mode", False)),
        show_preparation=bool(defaults_raw.get("show_preparation", True)),
        preparation_time=float(defaults_raw["preparation_time"]),
        num_cross_exam_questions=int(defaults_raw["num_cross_exam_questions"]),
        moderator_enabled=bool(defaults_raw.get("moderator_enabled", False)),
        moderator_strictness=ModeratorStrictness(defaults_raw.get("moderator_strictness", "moderate")),
        output_dir=Path(defaults_raw["output_dir"]),
        debaters=list(defaults_raw.get("debaters", [])),
        moderator_model=defaults_raw.get("moderator_model"),
        affirmative_personality=str(defaults_raw.get("affirmative_personality", "default")),
        negative_personality=str(defaults_raw.get("negative_personality", "default")),
        health_check_timeout_sec=float(defaults_raw.get("health_check_timeout_sec", 15.0)),
    )

    prompts_raw = raw["prompts"]
    prompts = PromptsConfig(
        debater=prompts_raw["debater"],
        preparation=prompts_raw["preparation"],
        opening=prompts_raw["opening"],
        rebuttal=prompts_raw["rebuttal"],
        cross_exam_question=prompts_raw["cross_exam_question"],
        cross_exam_answer=prompts_raw["cross_exam_answer"],
        closing=prompts_raw["closing"],
        moderator_summary=prompts_raw["moderator_summary"],
    )

    rules_raw = raw.get("moderator_rules") or {}
    moderator_rules = ModeratorRulesConfig(
        stay_on_topic=bool(rules_raw.get("stay_on_topic", True)),
        no_personal_attacks=bool(rules_raw.get("no_personal_attacks", True)),
        cite_sources=bool(rules_raw.get("cite_sources", False)),
        allowed_tactics=_parse_tactics(rules_raw.get("allowed_tactics"), "allowed_tactics"),
        forbidden_tactics=_parse_tactics(rules_raw.get("forbidden_tactics"), "forbidden_tactics"),
    )

    models: dict[str, ModelConfig] = {}
    available_providers: set[str] = set()

    for provider_name, model_raw in raw["models"].items():
        model_cfg = ModelConfig(
            name=provider_name,
            sdk=model_raw["sdk"],
            model=model_raw["model"],
            api_key_env=model_raw.get("api_key_env"),
            timeout_sec=int(model_raw["timeout_sec"]),
            max_tokens=int(model_raw["max_tokens"]),
            base_url=model_raw.get("base_url"),
        )
        models[provider_name] = model_cfg

        if model_cfg.api_key_env is None:
            available_providers.add(provider_name)
            logger.debug("Provider available (no key required): %s", provider_name)
        elif env.get(model_cfg.api_key_env, "").strip():
            available_providers.add(provider_name)
            logger.info("Provider available: %s", provider_name)
        else:
            logger.info(
                "Provider skipped (no API key): %s. Set %s in .env",
                provider_name,
                model_cfg.api_key_env,
            )

    return AppConfig(
        defaults=defaults,
        models=models,
        prompts=prompts,
        moderator_rules=moderator_rules,
        available_providers=available_providers,
    )


def _positive_float(value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError("expected a number")
    result = float(value)
    if not result > 0 or result == float("inf"):
        raise ValueError("must be a positive finite number")
    return result


def _positive_int(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError("expected an integer")
    result = int(value)
    if result <= 0:
        raise ValueError("must be a positive integer")
    return result


def _non_negative_int(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError("expected an integer")
    result = int(value)
    if result < 0:
        raise ValueError("must not be negative")
    return result


def _boolean(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ValueError("expected true/false")


def _strictness(value: Any) -> ModeratorStrictness:
    if isinstance(value, ModeratorStrictness):
        return value
    return ModeratorStrictness(str(value).strip().lower())


# field -> (environment variable, parser)
_OVERRIDABLE: dict[str, tuple[str, Callable[[Any], Any]]] = {
    "time_limit": ("DEBATE_TIME_LIMIT", _positive_float),
    "word_limit": ("DEBATE_WORD_LIMIT", _positive_int),
    "strict_mode": ("DEBATE_STRICT_MODE", _boolean),
    "preparation_time": ("DEBATE_PREPARATION_TIME", _positive_float),
    "num_cross_exam_questions": ("DEBATE_CROSS_EXAM_QUESTIONS", _non_negative_int),
    "moderator_enabled": ("DEBATE_MODERATOR", _boolean),
    "moderator_strictness": ("DEBATE_MODERATOR_STRICTNESS", _strictness),
}


def _apply_layer(values: dict[str, Any], layer: Mapping[str, Any], source: str) -> None:
    for key, raw_value in layer.items():
        if raw_value is None:
            continue
        _, parse = _OVERRIDABLE[key]
        try:
            values[key] = parse(raw_value)
        except (TypeError, ValueError) as exc:
            logger.warning(
                "Invalid %s value for %s: %r (%s). Using %r instead",
                source, key, raw_value, exc, values[key],
            )


def resolve_debate_config(
    defaults: DefaultsConfig,
    overrides: Mapping[str, Any] | None = None,
    env: Mapping[str, str] | None = None,
    rules: ModeratorRulesConfig | None = None,
) -> DebateConfig:
    """Merge settings file < environment < CLI overrides into a DebateConfig.

    Args:
        defaults: File defaults.
        overrides: Values from the command line, keyed by DebateConfig field.
            None values are ignored. Personality keys are passed through.
        env: Environment mapping (DEBATE_* variables, CI).
        rules: Tactic lists from the moderator rules section.

    Invalid environment or override values are logged and fall back to the
    next lower layer; they never raise.
    """
    env = env or {}
    overrides = dict(overrides or {})
    rules = rules or ModeratorRulesConfig()

    values: dict[str, Any] = {key: getattr(defaults, key) for key in _OVERRIDABLE}

    env_layer = {key: env[var] for key, (var, _) in _OVERRIDABLE.items() if var in env}
    _apply_layer(values, env_layer, "environment")

    personalities = {
        key: value
        for key in ("affirmative_personality", "negative_personality")
        if (value := overrides.pop(key, None)) is not None
    }
    overrides = {key: value for key, value in overrides.items() if value is not None}
    unknown = set(overrides) - set(_OVERRIDABLE)
    if unknown:
        raise KeyError(f"Unknown configuration override(s): {', '.join(sorted(unknown))}")
    _apply_layer(values, overrides, "command-line")

    stream_output = True
    if env.get("CI", "").strip().lower() not in ("", "0", "false"):
        logger.debug("CI environment detected, disabling live streaming display")
        stream_output = False

    return DebateConfig(
        time_limit=values["time_limit"],
        word_limit=values["word_limit"],
        strict_mode=values["strict_mode"],
        show_preparation=defaults.show_preparation,
        num_cross_exam_questions=values["num_cross_exam_questions"],
        preparation_time=values["preparation_time"],
        moderator_enabled=values["moderator_enabled"],
        moderator_strictness=values["moderator_strictness"],
        affirmative_personality=personalities.get("affirmative_personality", defaults.affirmative_personality),
        negative_personality=personalities.get("negative_personality", defaults.negative_personality),
        allowed_tactics=tuple(rules.allowed_tactics),
        forbidden_tactics=tuple(rules.forbidden_tactics),
        stream_output=stream_output,
    )
