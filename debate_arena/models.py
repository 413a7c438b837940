"""Dataclasses and enums for the debate pipeline. No logic beyond accessors."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Generic, TypeVar

if TYPE_CHECKING:
    from debate_arena.providers.base import ModelProvider

T = TypeVar("T")


class Position(str, Enum):
    AFFIRMATIVE = "affirmative"
    NEGATIVE = "negative"

    @property
    def opponent(self) -> Position:
        return Position.NEGATIVE if self is Position.AFFIRMATIVE else Position.AFFIRMATIVE


class RoundType(str, Enum):
    PREPARATION = "preparation"
    OPENING = "opening"
    REBUTTAL = "rebuttal"
    CROSS_EXAM = "cross_examination"
    CLOSING = "closing"


class DebateState(str, Enum):
    INITIALIZED = "initialized"
    PREPARATION = "preparation"
    OPENING_STATEMENTS = "opening_statements"
    REBUTTALS = "rebuttals"
    CROSS_EXAMINATION = "cross_examination"
    CLOSING_STATEMENTS = "closing_statements"
    COMPLETED = "completed"
    ERROR = "error"


class DebateTactic(str, Enum):
    GISH_GALLOP = "gish_gallop"
    STRAWMAN = "strawman"
    AD_HOMINEM = "ad_hominem"
    APPEAL_TO_EMOTION = "appeal_to_emotion"
    APPEAL_TO_AUTHORITY = "appeal_to_authority"
    FALSE_DILEMMA = "false_dilemma"
    SLIPPERY_SLOPE = "slippery_slope"
    RED_HERRING = "red_herring"
    NONE = "none"


class ViolationSeverity(str, Enum):
    MINOR = "minor"
    MODERATE = "moderate"
    MAJOR = "major"


class ModeratorStrictness(str, Enum):
    LENIENT = "lenient"
    MODERATE = "moderate"
    STRICT = "strict"


class InterventionType(str, Enum):
    WARNING = "warning"
    CORRECTION = "correction"
    PENALTY = "penalty"


class StatementOutcome(str, Enum):
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"  # partial content kept
    FAILED = "failed"


@dataclass(frozen=True)
class PerPosition(Generic[T]):
    """Exactly one value per debate position."""

    affirmative: T
    negative: T

    def __getitem__(self, position: Position) -> T:
        if position is Position.AFFIRMATIVE:
            return self.affirmative
        return self.negative

    def with_value(self, position: Position, value: T) -> PerPosition[T]:
        if position is Position.AFFIRMATIVE:
            return replace(self, affirmative=value)
        return replace(self, negative=value)

    def items(self) -> tuple[tuple[Position, T], tuple[Position, T]]:
        return (Position.AFFIRMATIVE, self.affirmative), (Position.NEGATIVE, self.negative)


@dataclass(frozen=True)
class Statement:
    model: str
    position: Position
    content: str
    word_count: int
    generated_at: datetime
    outcome: StatementOutcome = StatementOutcome.COMPLETED
    error: str | None = None

    @property
    def is_empty(self) -> bool:
        return not self.content.strip()


@dataclass(frozen=True)
class Round:
    type: RoundType
    affirmative_statement: Statement | None = None
    negative_statement: Statement | None = None
    started_at: datetime = field(default_factory=datetime.now)
    completed_at: datetime | None = None

    def statement_for(self, position: Position) -> Statement | None:
        if position is Position.AFFIRMATIVE:
            return self.affirmative_statement
        return self.negative_statement

    @property
    def is_complete(self) -> bool:
        return self.affirmative_statement is not None and self.negative_statement is not None


@dataclass(frozen=True)
class DebateContext:
    topic: str
    position: Position | None  # None for the moderator
    round_type: RoundType
    previous_statements: tuple[Statement, ...] = ()
    preparation_material: str | None = None
    personality_reminder: str | None = None


@dataclass(frozen=True)
class PersonalityProfile:
    civility: float = 5
    manner: float = 5
    research_depth: float = 5
    rhetoric_usage: float = 5
    tactics: tuple[DebateTactic, ...] = (DebateTactic.NONE,)
    name: str | None = None
    custom_instructions: str | None = None


@dataclass(frozen=True)
class DebateConfig:
    time_limit: float = 120          # seconds per statement
    word_limit: int | None = 500     # max words per statement
    strict_mode: bool = False
    show_preparation: bool = True
    num_cross_exam_questions: int = 3
    preparation_time: float = 180    # seconds for the preparation phase
    moderator_enabled: bool = False
    moderator_strictness: ModeratorStrictness = ModeratorStrictness.MODERATE
    affirmative_personality: PersonalityProfile | str = "default"
    negative_personality: PersonalityProfile | str = "default"
    allowed_tactics: tuple[DebateTactic, ...] = ()
    forbidden_tactics: tuple[DebateTactic, ...] = ()
    stream_output: bool = True


@dataclass(frozen=True)
class DebateRules:
    stay_on_topic: bool = True
    no_personal_attacks: bool = True
    cite_sources: bool = False
    time_limit: float = 120
    word_limit: int | None = None
    allowed_tactics: tuple[DebateTactic, ...] = ()
    forbidden_tactics: tuple[DebateTactic, ...] = ()


@dataclass(frozen=True)
class RuleViolation:
    rule: str
    severity: ViolationSeverity
    explanation: str
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class TacticIdentification:
    tactic: DebateTactic
    description: str
    effectiveness: str  # qualitative assessment


@dataclass(frozen=True)
class FallacyDetection:
    fallacy_type: str
    explanation: str
    severity: ViolationSeverity


@dataclass(frozen=True)
class ModeratorReview:
    statement: Statement
    violations: tuple[RuleViolation, ...]
    tactics_identified: tuple[TacticIdentification, ...]
    fallacies_detected: tuple[FallacyDetection, ...]
    requires_intervention: bool
    commentary: str | None = None


@dataclass(frozen=True)
class ModeratorIntervention:
    type: InterventionType
    target: Position
    message: str
    review: ModeratorReview
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class ModeratorCommentary:
    round_type: RoundType
    round_summary: str
    tactical_analysis: tuple[TacticIdentification, ...] = ()
    fallacy_report: tuple[FallacyDetection, ...] = ()
    generated_by: str = "heuristic"
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class ModeratorContext:
    strictness: ModeratorStrictness
    rules: DebateRules
    violation_history: PerPosition[tuple[RuleViolation, ...]] = field(
        default_factory=lambda: PerPosition((), ())
    )
    intervention_count: PerPosition[int] = field(default_factory=lambda: PerPosition(0, 0))


@dataclass(frozen=True)
class Citation:
    id: str
    text: str
    type: str  # url, academic, book, article, general
    model: str
    position: Position
    round_type: RoundType
    url: str | None = None
    author: str | None = None
    title: str | None = None
    source: str | None = None
    year: int | None = None


@dataclass(frozen=True)
class DebateErrorRecord:
    message: str
    state: DebateState
    round_type: RoundType | None = None
    model: str | None = None
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class Debate:
    id: str
    topic: str
    config: DebateConfig
    providers: PerPosition[ModelProvider]
    personalities: PerPosition[PersonalityProfile]
    state: DebateState = DebateState.INITIALIZED
    rounds: tuple[Round, ...] = ()
    moderator_context: ModeratorContext | None = None
    moderator_commentary: tuple[ModeratorCommentary, ...] = ()
    reviews: tuple[ModeratorReview, ...] = ()
    interventions: tuple[ModeratorIntervention, ...] = ()
    citations: tuple[Citation, ...] = ()
    errors: tuple[DebateErrorRecord, ...] = ()
    created_at: datetime = field(default_factory=datetime.now)
    completed_at: datetime | None = None

    @property
    def rule_violations(self) -> PerPosition[tuple[RuleViolation, ...]]:
        if self.moderator_context is None:
            return PerPosition((), ())
        return self.moderator_context.violation_history

    def model_name(self, position: Position) -> str:
        return self.providers[position].get_model_name()

    def round_of(self, round_type: RoundType) -> Round | None:
        return next((r for r in self.rounds if r.type is round_type), None)
