"""Prompt construction from the templates in settings.yaml."""

from collections.abc import Sequence
from typing import Protocol, assert_never

from config.config_loader import PromptsConfig
from debate_arena.models import DebateTactic, PersonalityProfile, Position, RoundType, Statement


class PromptBuilder(Protocol):
    """Instruction surface consumed by the orchestrator."""

    def build_debater_prompt(
        self, position: Position, personality: PersonalityProfile, tactics: Sequence[DebateTactic]
    ) -> str: ...

    def build_context_reminder(self, personality: PersonalityProfile) -> str: ...

    def build_round_prompt(self, round_type: RoundType, topic: str, position: Position) -> str: ...

    def build_cross_exam_question(self, topic: str, position: Position, exchange: int) -> str: ...

    def build_cross_exam_answer(self, topic: str, position: Position, question: str) -> str: ...

    def build_moderator_summary(self, topic: str, round_type: RoundType, statements: Sequence[Statement]) -> str: ...


def _band(value: float) -> str:
    if value <= 3:
        return "low"
    if value >= 7:
        return "high"
    return "mid"


_TRAIT_INSTRUCTIONS: dict[str, dict[str, str]] = {
    "civility": {
        "low": "Be blunt and confrontational. Press hard on every weakness.",
        "mid": "Be direct but respectful.",
        "high": "Be courteous and acknowledge good points before countering them.",
    },
    "manner": {
        "low": "Use a casual, conversational tone.",
        "mid": "Use a clear, professional tone.",
        "high": "Use a formal, academic register.",
    },
    "research_depth": {
        "low": "Rely on general reasoning and common knowledge.",
        "mid": "Support key claims with examples.",
        "high": "Ground every claim in specific evidence, data and named sources.",
    },
    "rhetoric_usage": {
        "low": "Keep the language plain and literal.",
        "mid": "Use rhetorical devices where they clarify the point.",
        "high": "Use vivid rhetoric: analogies, repetition and memorable phrasing.",
    },
}


def describe_tactic(tactic: DebateTactic) -> str:
    match tactic:
        case DebateTactic.GISH_GALLOP:
            return "Gish gallop: present many arguments in rapid succession."
        case DebateTactic.STRAWMAN:
            return "Strawman: restate the opponent's position in a weaker form and refute that."
        case DebateTactic.AD_HOMINEM:
            return "Ad hominem: question the opponent's credibility."
        case DebateTactic.APPEAL_TO_EMOTION:
            return "Appeal to emotion: use emotionally charged examples."
        case DebateTactic.APPEAL_TO_AUTHORITY:
            return "Appeal to authority: lean on expert and institutional opinion."
        case DebateTactic.FALSE_DILEMMA:
            return "False dilemma: frame the issue as a choice between two options."
        case DebateTactic.SLIPPERY_SLOPE:
            return "Slippery slope: argue that one step leads to escalating consequences."
        case DebateTactic.RED_HERRING:
            return "Red herring: redirect attention to related issues that favour your side."
        case DebateTactic.NONE:
            return ""
        case _:
            assert_never(tactic)


class TemplatePromptBuilder:
    """PromptBuilder backed by PromptsConfig templates."""

    def __init__(self, prompts: PromptsConfig) -> None:
        self._prompts = prompts

    def _personality_text(self, personality: PersonalityProfile) -> str:
        lines = [
            _TRAIT_INSTRUCTIONS[trait][_band(getattr(personality, trait))]
            for trait in ("civility", "manner", "research_depth", "rhetoric_usage")
        ]
        if personality.custom_instructions:
            lines.append(personality.custom_instructions)
        return "Style:\n" + "\n".join(f"- {line}" for line in lines)

    def build_debater_prompt(
        self, position: Position, personality: PersonalityProfile, tactics: Sequence[DebateTactic]
    ) -> str:
        label = "affirmative (in favor of the topic)" if position is Position.AFFIRMATIVE else "negative (against the topic)"
        described = [d for d in (describe_tactic(t) for t in tactics) if d]
        tactics_text = "Tactics to employ:\n" + "\n".join(f"- {d}" for d in described) if described else ""
        return self._prompts.debater.format(
            position_label=label,
            personality=self._personality_text(personality),
            tactics=tactics_text,
        ).strip()

    def build_context_reminder(self, personality: PersonalityProfile) -> str:
        name = f" ({personality.name})" if personality.name else ""
        traits = ", ".join(
            f"{trait.replace('_', ' ')} {getattr(personality, trait):g}/10"
            for trait in ("civility", "manner", "research_depth", "rhetoric_usage")
        )
        return f"Remember your debating style{name}: {traits}."

    def build_round_prompt(self, round_type: RoundType, topic: str, position: Position) -> str:
        match round_type:
            case RoundType.PREPARATION:
                template = self._prompts.preparation
            case RoundType.OPENING:
                template = self._prompts.opening
            case RoundType.REBUTTAL:
                template = self._prompts.rebuttal
            case RoundType.CLOSING:
                template = self._prompts.closing
            case RoundType.CROSS_EXAM:
                raise ValueError("Cross-examination prompts are built per question and answer")
            case _:
                assert_never(round_type)
        return template.format(topic=topic, position=position.value, opponent=position.opponent.value).strip()

    def build_cross_exam_question(self, topic: str, position: Position, exchange: int) -> str:
        return self._prompts.cross_exam_question.format(
            topic=topic, position=position.value, opponent=position.opponent.value, exchange=exchange,
        ).strip()

    def build_cross_exam_answer(self, topic: str, position: Position, question: str) -> str:
        return self._prompts.cross_exam_answer.format(
            topic=topic, position=position.value, opponent=position.opponent.value, question=question,
        ).strip()

    def build_moderator_summary(self, topic: str, round_type: RoundType, statements: Sequence[Statement]) -> str:
        block = "\n\n".join(
            f"[{s.position.value.upper()} - {s.model}]:\n{s.content or '(no statement)'}" for s in statements
        )
        return self._prompts.moderator_summary.format(
            topic=topic, round=round_type.value.replace("_", " "), statements=block,
        ).strip()
