"""Moderator engine: rule violations, tactic identification, fallacy detection, interventions.

Detection is heuristic (phrase and pattern matching). The intervention policy
is a pure function of the current violations, the position's history and the
strictness tier.
"""

import logging
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, replace
from typing import assert_never

from debate_arena.models import (
    DebateConfig,
    DebateRules,
    DebateTactic,
    FallacyDetection,
    InterventionType,
    ModeratorCommentary,
    ModeratorContext,
    ModeratorIntervention,
    ModeratorReview,
    ModeratorStrictness,
    RoundType,
    RuleViolation,
    Statement,
    StatementOutcome,
    TacticIdentification,
    ViolationSeverity,
)

logger = logging.getLogger(__name__)

# Minor violations by one position that count as "repeated" under moderate strictness
REPEATED_MINOR_THRESHOLD = 2

# Statements shorter than this are not checked for topic drift or missing citations
_MIN_WORDS_FOR_CONTENT_RULES = 25

_STOPWORDS = frozenset(
    "the and for should with that this from into over under about are was were will would "
    "could have has had not but our their its than then they them what which who whom why how "
    "all any more most such only also very can may must".split()
)

_STRAWMAN = re.compile(
    r"so what (you'?re|my opponent is) (really )?saying|your position essentially means|"
    r"my opponent (wants|would have) us (to )?believe|in other words, my opponent",
    re.IGNORECASE,
)
_AD_HOMINEM = re.compile(
    r"coming from someone who|it'?s convenient that (you|my opponent)|"
    r"my opponent (clearly )?(doesn'?t|does not) understand|"
    r"\b(you|my opponent)\b[^.!?]{0,40}\b(idiot|stupid|moron|liar|fool|ignorant|incompetent|clueless|dishonest)\b",
    re.IGNORECASE,
)
_INSULT = re.compile(
    r"\b(you|your|my opponent)\b[^.!?]{0,40}\b(idiot|stupid|moron|liar|fool|ignorant|incompetent|clueless|dishonest)\b",
    re.IGNORECASE,
)
_EMOTION = re.compile(
    r"\b(imagine|heartbreaking|tragic|devastating|terrifying|horrifying|suffer(ing)?|"
    r"fear|outrage(ous)?|innocent|children|families|despair)\b",
    re.IGNORECASE,
)
_AUTHORITY = re.compile(
    r"\b(experts agree|leading experts|renowned (scholars|experts|scientists)|scientists agree|"
    r"according to (renowned|leading|prominent)|every serious (expert|scholar)|nobel laureate)\b",
    re.IGNORECASE,
)
_FALSE_DILEMMA = re.compile(
    r"\beither\b[^.!?]{1,80}\bor\b|only two (options|choices|paths)|the only alternative|"
    r"there is no middle ground",
    re.IGNORECASE,
)
_SLIPPERY_SLOPE = re.compile(
    r"inevitably lead|first step (toward|towards|to)|if we allow this|before (long|we know it)|"
    r"slippery slope|where does it end",
    re.IGNORECASE,
)
_RED_HERRING = re.compile(
    r"\bbut what about\b|the real issue (here )?is|let'?s not forget|more importantly, consider|"
    r"speaking of which",
    re.IGNORECASE,
)
_POINT_MARKER = re.compile(
    r"(^\s*(\d+[.)]|[-*•])\s+)|\b(first|second|third|fourth|fifth|furthermore|moreover|additionally)\b",
    re.IGNORECASE | re.MULTILINE,
)
_HASTY_GENERALIZATION = re.compile(
    r"\beveryone knows\b|\bnobody can deny\b|\bit is obvious that\b|\balways has been\b",
    re.IGNORECASE,
)
_BANDWAGON = re.compile(
    r"\bmost people agree\b|\beveryone agrees\b|\bmillions of people can'?t be wrong\b|\bthe majority believes\b",
    re.IGNORECASE,
)
_TU_QUOQUE = re.compile(r"\byou do (it|the same) too\b|\bhypocritical of (you|my opponent)\b", re.IGNORECASE)
_CITATION = re.compile(
    r"https?://|\bet al\.?|\(\d{4}\)|\[\d+\]|\baccording to\b|\bstudy\b|\bstudies\b|\breport(ed)?\b|\bsurvey\b|\bdata from\b",
    re.IGNORECASE,
)

_GISH_GALLOP_MIN_POINTS = 5


@dataclass(frozen=True)
class _FallacyPattern:
    name: str
    pattern: re.Pattern[str]
    severity: ViolationSeverity
    explanation: str


_FALLACY_PATTERNS: tuple[_FallacyPattern, ...] = (
    _FallacyPattern("strawman", _STRAWMAN, ViolationSeverity.MODERATE,
                    "Restates the opponent's argument in a weaker form before refuting it."),
    _FallacyPattern("ad_hominem", _AD_HOMINEM, ViolationSeverity.MAJOR,
                    "Targets the opponent's character or motives instead of the argument."),
    _FallacyPattern("false_dilemma", _FALSE_DILEMMA, ViolationSeverity.MODERATE,
                    "Presents the question as having only two possible outcomes."),
    _FallacyPattern("slippery_slope", _SLIPPERY_SLOPE, ViolationSeverity.MODERATE,
                    "Claims an unsupported chain of escalating consequences."),
    _FallacyPattern("appeal_to_authority", _AUTHORITY, ViolationSeverity.MINOR,
                    "Relies on unnamed or generic authority rather than evidence."),
    _FallacyPattern("hasty_generalization", _HASTY_GENERALIZATION, ViolationSeverity.MINOR,
                    "Asserts a sweeping claim as self-evident."),
    _FallacyPattern("bandwagon", _BANDWAGON, ViolationSeverity.MINOR,
                    "Treats popularity of a view as evidence that it is true."),
    _FallacyPattern("tu_quoque", _TU_QUOQUE, ViolationSeverity.MODERATE,
                    "Deflects criticism by accusing the opponent of the same thing."),
)


def severity_rank(severity: ViolationSeverity) -> int:
    match severity:
        case ViolationSeverity.MINOR:
            return 1
        case ViolationSeverity.MODERATE:
            return 2
        case ViolationSeverity.MAJOR:
            return 3
        case _:
            assert_never(severity)


def forbidden_tactic_severity(tactic: DebateTactic) -> ViolationSeverity | None:
    """Severity of using a forbidden tactic. None means the tactic cannot be violated."""
    match tactic:
        case DebateTactic.AD_HOMINEM:
            return ViolationSeverity.MAJOR
        case (
            DebateTactic.STRAWMAN
            | DebateTactic.RED_HERRING
            | DebateTactic.FALSE_DILEMMA
            | DebateTactic.SLIPPERY_SLOPE
            | DebateTactic.GISH_GALLOP
        ):
            return ViolationSeverity.MODERATE
        case DebateTactic.APPEAL_TO_EMOTION | DebateTactic.APPEAL_TO_AUTHORITY:
            return ViolationSeverity.MINOR
        case DebateTactic.NONE:
            return None
        case _:
            assert_never(tactic)


def intervention_type_for(severity: ViolationSeverity) -> InterventionType:
    match severity:
        case ViolationSeverity.MINOR:
            return InterventionType.WARNING
        case ViolationSeverity.MODERATE:
            return InterventionType.CORRECTION
        case ViolationSeverity.MAJOR:
            return InterventionType.PENALTY
        case _:
            assert_never(severity)


def _count(pattern: re.Pattern[str], text: str) -> int:
    return len(pattern.findall(text))


def _tactic_evidence(tactic: DebateTactic, text: str) -> tuple[int, str] | None:
    """Return (hits, description) when the tactic is observable in text."""
    match tactic:
        case DebateTactic.GISH_GALLOP:
            points = _count(_POINT_MARKER, text)
            if points >= _GISH_GALLOP_MIN_POINTS:
                return points - _GISH_GALLOP_MIN_POINTS + 1, f"Rapid succession of {points} separate points."
            return None
        case DebateTactic.STRAWMAN:
            hits = _count(_STRAWMAN, text)
            return (hits, "Reframes the opponent's position before refuting it.") if hits else None
        case DebateTactic.AD_HOMINEM:
            hits = _count(_AD_HOMINEM, text)
            return (hits, "Questions the opponent's character or credibility.") if hits else None
        case DebateTactic.APPEAL_TO_EMOTION:
            hits = _count(_EMOTION, text)
            return (hits - 1, "Leans on emotionally charged language.") if hits >= 2 else None
        case DebateTactic.APPEAL_TO_AUTHORITY:
            hits = _count(_AUTHORITY, text)
            return (hits, "Invokes the weight of experts or institutions.") if hits else None
        case DebateTactic.FALSE_DILEMMA:
            hits = _count(_FALSE_DILEMMA, text)
            return (hits, "Frames the issue as a choice between two options.") if hits else None
        case DebateTactic.SLIPPERY_SLOPE:
            hits = _count(_SLIPPERY_SLOPE, text)
            return (hits, "Predicts a chain of escalating consequences.") if hits else None
        case DebateTactic.RED_HERRING:
            hits = _count(_RED_HERRING, text)
            return (hits, "Diverts attention to a tangential issue.") if hits else None
        case DebateTactic.NONE:
            return None
        case _:
            assert_never(tactic)


def _effectiveness(hits: int) -> str:
    if hits >= 3:
        return "heavy use; dominates the argument"
    if hits == 2:
        return "noticeable; shapes the argument"
    return "light touch; limited impact"


def identify_tactics(text: str, candidates: Iterable[DebateTactic] = tuple(DebateTactic)) -> list[TacticIdentification]:
    found: list[TacticIdentification] = []
    for tactic in candidates:
        evidence = _tactic_evidence(tactic, text)
        if evidence is None:
            continue
        hits, description = evidence
        found.append(TacticIdentification(tactic=tactic, description=description, effectiveness=_effectiveness(hits)))
    return found


def detect_fallacies(text: str) -> list[FallacyDetection]:
    return [
        FallacyDetection(fallacy_type=p.name, explanation=p.explanation, severity=p.severity)
        for p in _FALLACY_PATTERNS
        if p.pattern.search(text)
    ]


def topic_keywords(topic: str) -> set[str]:
    words = re.findall(r"[a-z][a-z'-]+", topic.lower())
    return {w[:5] for w in words if len(w) >= 3 and w not in _STOPWORDS}


def _is_on_topic(text: str, keywords: set[str]) -> bool:
    if not keywords:
        return True
    stems = {w[:5] for w in re.findall(r"[a-z][a-z'-]+", text.lower()) if len(w) >= 3}
    return bool(stems & keywords)


def rules_from_config(config: DebateConfig, base: DebateRules | None = None) -> DebateRules:
    """Active rules for a debate: behavioural flags from base, limits and tactics from config.

    Strict mode always enforces staying on topic.
    """
    base = base or DebateRules()
    return replace(
        base,
        stay_on_topic=base.stay_on_topic or config.strict_mode,
        time_limit=config.time_limit,
        word_limit=config.word_limit,
        allowed_tactics=config.allowed_tactics,
        forbidden_tactics=config.forbidden_tactics,
    )


def requires_intervention(
    violations: Sequence[RuleViolation],
    history: Sequence[RuleViolation],
    strictness: ModeratorStrictness,
) -> bool:
    """Decide whether the current violations warrant a moderator intervention.

    lenient: only a major violation. moderate: a moderate or major violation,
    or repeated minor violations by the same position (history included).
    strict: any violation.
    """
    if not violations:
        return False
    match strictness:
        case ModeratorStrictness.LENIENT:
            return any(v.severity is ViolationSeverity.MAJOR for v in violations)
        case ModeratorStrictness.MODERATE:
            if any(v.severity is not ViolationSeverity.MINOR for v in violations):
                return True
            minors = sum(1 for v in (*history, *violations) if v.severity is ViolationSeverity.MINOR)
            return minors >= REPEATED_MINOR_THRESHOLD
        case ModeratorStrictness.STRICT:
            return True
        case _:
            assert_never(strictness)


class ModeratorEngine:
    """Reviews statements for one debate topic."""

    def __init__(self, topic: str) -> None:
        self.topic = topic
        self._keywords = topic_keywords(topic)

    def detect_violations(
        self,
        statement: Statement,
        rules: DebateRules,
        tactics: Sequence[TacticIdentification] = (),
    ) -> list[RuleViolation]:
        text = statement.content
        violations: list[RuleViolation] = []
        substantial = statement.word_count >= _MIN_WORDS_FOR_CONTENT_RULES

        if rules.stay_on_topic and substantial and not _is_on_topic(text, self._keywords):
            violations.append(RuleViolation(
                rule="stay_on_topic",
                severity=ViolationSeverity.MODERATE,
                explanation=f'Statement does not engage with the topic "{self.topic}".',
            ))

        if rules.no_personal_attacks and _INSULT.search(text):
            violations.append(RuleViolation(
                rule="no_personal_attacks",
                severity=ViolationSeverity.MAJOR,
                explanation="Statement insults the opponent directly.",
            ))

        if rules.cite_sources and substantial and not _CITATION.search(text):
            violations.append(RuleViolation(
                rule="cite_sources",
                severity=ViolationSeverity.MINOR,
                explanation="Statement makes claims without citing any source.",
            ))

        if rules.word_limit and statement.word_count > rules.word_limit:
            violations.append(RuleViolation(
                rule="word_limit",
                severity=ViolationSeverity.MINOR,
                explanation=f"Statement has {statement.word_count} words; limit is {rules.word_limit}.",
            ))

        if statement.outcome is StatementOutcome.TIMED_OUT:
            violations.append(RuleViolation(
                rule="time_limit",
                severity=ViolationSeverity.MINOR,
                explanation=f"Statement was cut off at the {rules.time_limit:g}s time limit.",
            ))

        for identified in tactics:
            tactic = identified.tactic
            if tactic in rules.forbidden_tactics:
                severity = forbidden_tactic_severity(tactic)
                if severity is not None:
                    violations.append(RuleViolation(
                        rule=f"forbidden_tactic:{tactic.value}",
                        severity=severity,
                        explanation=f"Used forbidden tactic {tactic.value.replace('_', ' ')}: {identified.description}",
                    ))
            elif rules.allowed_tactics and tactic not in rules.allowed_tactics:
                violations.append(RuleViolation(
                    rule=f"unapproved_tactic:{tactic.value}",
                    severity=ViolationSeverity.MINOR,
                    explanation=f"Tactic {tactic.value.replace('_', ' ')} is not on the allowed list.",
                ))

        return violations

    def review(self, statement: Statement, context: ModeratorContext) -> ModeratorReview:
        """Review one statement. Does not modify the context."""
        tactics = identify_tactics(statement.content)
        fallacies = detect_fallacies(statement.content)
        violations = self.detect_violations(statement, context.rules, tactics)
        history = context.violation_history[statement.position]
        intervene = requires_intervention(violations, history, context.strictness)

        parts: list[str] = []
        if violations:
            parts.append("Violations: " + ", ".join(f"{v.rule} ({v.severity.value})" for v in violations))
        if tactics:
            parts.append("Tactics: " + ", ".join(t.tactic.value for t in tactics))
        if fallacies:
            parts.append("Fallacies: " + ", ".join(f.fallacy_type for f in fallacies))

        logger.debug(
            "Reviewed %s statement: %d violations, %d tactics, %d fallacies, intervene=%s",
            statement.position.value, len(violations), len(tactics), len(fallacies), intervene,
        )
        return ModeratorReview(
            statement=statement,
            violations=tuple(violations),
            tactics_identified=tuple(tactics),
            fallacies_detected=tuple(fallacies),
            requires_intervention=intervene,
            commentary="; ".join(parts) or None,
        )

    def record(
        self, context: ModeratorContext, review: ModeratorReview
    ) -> tuple[ModeratorContext, ModeratorIntervention | None]:
        """Append a review's violations to the position's history.

        Returns:
            (new context, intervention or None). History and counts only grow.
        """
        position = review.statement.position
        history = context.violation_history[position] + review.violations
        new_context = replace(context, violation_history=context.violation_history.with_value(position, history))
        if not review.requires_intervention:
            return new_context, None

        count = context.intervention_count[position] + 1
        new_context = replace(new_context, intervention_count=context.intervention_count.with_value(position, count))
        worst = max(review.violations, key=lambda v: severity_rank(v.severity))
        kind = intervention_type_for(worst.severity)
        intervention = ModeratorIntervention(
            type=kind,
            target=position,
            message=f"{kind.value.title()} to the {position.value} side: {worst.explanation}",
            review=review,
        )
        logger.warning("Moderator %s for %s: %s", kind.value, position.value, worst.rule)
        return new_context, intervention


def summarize_round(round_type: RoundType, reviews: Sequence[ModeratorReview]) -> ModeratorCommentary:
    """Heuristic round summary built from the round's reviews."""
    lines: list[str] = []
    for review in reviews:
        side = review.statement.position
        if review.statement.is_empty:
            lines.append(f"The {side.value} side did not deliver a statement.")
            continue
        notes = []
        if review.violations:
            notes.append(f"{len(review.violations)} rule issue(s)")
        if review.tactics_identified:
            notes.append("tactics: " + ", ".join(t.tactic.value.replace("_", " ") for t in review.tactics_identified))
        if review.fallacies_detected:
            notes.append("fallacies: " + ", ".join(f.fallacy_type.replace("_", " ") for f in review.fallacies_detected))
        detail = "; ".join(notes) if notes else "clean argument"
        lines.append(f"The {side.value} side spoke {review.statement.word_count} words ({detail}).")
    return ModeratorCommentary(
        round_type=round_type,
        round_summary=" ".join(lines) or "No statements to review.",
        tactical_analysis=tuple(t for r in reviews for t in r.tactics_identified),
        fallacy_report=tuple(f for r in reviews for f in r.fallacies_detected),
    )
