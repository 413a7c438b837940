"""Debate orchestration: phase state machine, concurrent deadline-bounded generation, moderation."""

import asyncio
import logging
import random
import uuid
from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
from datetime import datetime
from typing import NoReturn, Protocol, assert_never

from debate_arena.deadline import Cancelled, Completed, deadline_after, run_with_deadline
from debate_arena.errors import ConfigurationError, DebateFailedError, InvalidTransitionError
from debate_arena.models import (
    Citation,
    Debate,
    DebateConfig,
    DebateContext,
    DebateErrorRecord,
    DebateRules,
    DebateState,
    ModeratorCommentary,
    ModeratorContext,
    ModeratorIntervention,
    ModeratorReview,
    PerPosition,
    Position,
    Round,
    RoundType,
    Statement,
    StatementOutcome,
)
from debate_arena.moderator import ModeratorEngine, rules_from_config, summarize_round
from debate_arena.personality import effective_preparation_time, resolve_personality
from debate_arena.prompts import PromptBuilder
from debate_arena.providers.base import ModelProvider, ProviderError
from debate_arena.selection import assign_positions, select_models
from debate_arena.validation import count_words, enforce_word_limit, validate_config, validate_topic

logger = logging.getLogger(__name__)

VALID_TRANSITIONS: dict[DebateState, frozenset[DebateState]] = {
    DebateState.INITIALIZED: frozenset({DebateState.PREPARATION, DebateState.ERROR}),
    DebateState.PREPARATION: frozenset({DebateState.OPENING_STATEMENTS, DebateState.ERROR}),
    DebateState.OPENING_STATEMENTS: frozenset({DebateState.REBUTTALS, DebateState.ERROR}),
    DebateState.REBUTTALS: frozenset({DebateState.CROSS_EXAMINATION, DebateState.ERROR}),
    DebateState.CROSS_EXAMINATION: frozenset({DebateState.CLOSING_STATEMENTS, DebateState.ERROR}),
    DebateState.CLOSING_STATEMENTS: frozenset({DebateState.COMPLETED, DebateState.ERROR}),
    DebateState.COMPLETED: frozenset(),
    DebateState.ERROR: frozenset(),
}

CONTENT_ROUNDS = (RoundType.OPENING, RoundType.REBUTTAL, RoundType.CROSS_EXAM, RoundType.CLOSING)

CitationExtractor = Callable[[Statement, RoundType], Sequence[Citation]]


def state_for_round(round_type: RoundType) -> DebateState:
    match round_type:
        case RoundType.PREPARATION:
            return DebateState.PREPARATION
        case RoundType.OPENING:
            return DebateState.OPENING_STATEMENTS
        case RoundType.REBUTTAL:
            return DebateState.REBUTTALS
        case RoundType.CROSS_EXAM:
            return DebateState.CROSS_EXAMINATION
        case RoundType.CLOSING:
            return DebateState.CLOSING_STATEMENTS
        case _:
            assert_never(round_type)


class DebateListener(Protocol):
    """Receives display notifications as the debate runs."""

    def on_phase_start(self, round_type: RoundType) -> None: ...

    def on_chunk(self, model: str, position: Position, chunk: str) -> None: ...

    def on_complete(self, statement: Statement, round_type: RoundType) -> None: ...

    def on_timeout(self, model: str, position: Position, round_type: RoundType, partial: str) -> None: ...

    def on_error(self, model: str, position: Position, round_type: RoundType, error: Exception) -> None: ...

    def on_intervention(self, intervention: ModeratorIntervention) -> None: ...


class NullListener:
    def on_phase_start(self, round_type: RoundType) -> None:
        pass

    def on_chunk(self, model: str, position: Position, chunk: str) -> None:
        pass

    def on_complete(self, statement: Statement, round_type: RoundType) -> None:
        pass

    def on_timeout(self, model: str, position: Position, round_type: RoundType, partial: str) -> None:
        pass

    def on_error(self, model: str, position: Position, round_type: RoundType, error: Exception) -> None:
        pass

    def on_intervention(self, intervention: ModeratorIntervention) -> None:
        pass


@dataclass(frozen=True)
class _Generated:
    statement: Statement
    errors: tuple[DebateErrorRecord, ...] = ()

    @property
    def failed(self) -> bool:
        return self.statement.outcome is StatementOutcome.FAILED


def build_context(
    debate: Debate,
    position: Position,
    round_type: RoundType,
    personality_reminder: str | None = None,
) -> DebateContext:
    """Context handed to a provider for one turn.

    Opening sees nothing but its own preparation; rebuttal sees the opponent's
    opening; cross-examination the opponent's opening and rebuttal; closing
    every opening, rebuttal and cross-examination statement.
    """
    opponent = position.opponent

    def statement(rt: RoundType, pos: Position) -> Statement | None:
        rnd = debate.round_of(rt)
        return rnd.statement_for(pos) if rnd is not None else None

    match round_type:
        case RoundType.PREPARATION | RoundType.OPENING:
            previous: list[Statement | None] = []
        case RoundType.REBUTTAL:
            previous = [statement(RoundType.OPENING, opponent)]
        case RoundType.CROSS_EXAM:
            previous = [statement(RoundType.OPENING, opponent), statement(RoundType.REBUTTAL, opponent)]
        case RoundType.CLOSING:
            previous = [
                statement(rt, pos)
                for rt in (RoundType.OPENING, RoundType.REBUTTAL, RoundType.CROSS_EXAM)
                for pos in Position
            ]
        case _:
            assert_never(round_type)

    preparation = None
    if round_type is not RoundType.PREPARATION:
        prep = statement(RoundType.PREPARATION, position)
        if prep is not None and not prep.is_empty:
            preparation = prep.content

    return DebateContext(
        topic=debate.topic,
        position=position,
        round_type=round_type,
        previous_statements=tuple(s for s in previous if s is not None and not s.is_empty),
        preparation_material=preparation,
        personality_reminder=personality_reminder,
    )


class DebateOrchestrator:
    """Drives a debate through its phases.

    Every phase method takes a Debate snapshot and returns a new one; the input
    snapshot is never modified.
    """

    def __init__(
        self,
        prompt_builder: PromptBuilder,
        *,
        listener: DebateListener | None = None,
        moderator_provider: ModelProvider | None = None,
        base_rules: DebateRules | None = None,
        citation_extractor: CitationExtractor | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._prompts = prompt_builder
        self._listener = listener or NullListener()
        self._moderator_provider = moderator_provider
        self._base_rules = base_rules
        self._citation_extractor = citation_extractor
        self.rng = rng or random.Random()

    # -- lifecycle ---------------------------------------------------------

    def initialize_debate(
        self,
        topic: str,
        config: DebateConfig,
        provider_a: ModelProvider,
        provider_b: ModelProvider,
    ) -> Debate:
        """Validate inputs, assign positions, and return a debate in the initialized state.

        Raises:
            ConfigurationError: Empty topic or out-of-range config values.
            InsufficientModelsError: The two providers are not distinct.
            PersonalityValidationError: A configured personality is invalid.
        """
        errors = validate_topic(topic)
        invalid = ["topic"] if errors else []
        config_errors, config_invalid = validate_config(config)
        errors += config_errors
        invalid += config_invalid
        if errors:
            raise ConfigurationError("Invalid debate configuration: " + "; ".join(errors), invalid)

        first, second = select_models([provider_a, provider_b])
        providers = assign_positions(first, second, self.rng)
        personalities = PerPosition(
            affirmative=resolve_personality(config.affirmative_personality, self.rng),
            negative=resolve_personality(config.negative_personality, self.rng),
        )

        moderator_context = None
        if config.moderator_enabled:
            moderator_context = ModeratorContext(
                strictness=config.moderator_strictness,
                rules=rules_from_config(config, self._base_rules),
            )

        debate = Debate(
            id=str(uuid.uuid4()),
            topic=topic.strip(),
            config=config,
            providers=providers,
            personalities=personalities,
            moderator_context=moderator_context,
        )
        logger.info("Debate %s initialized: %s", debate.id, debate.topic)
        return debate

    async def execute_preparation(self, debate: Debate) -> Debate:
        """Run the preparation phase; both positions share one deadline from phase start."""
        self._check_transition(debate, DebateState.PREPARATION)
        started = datetime.now()
        budget = effective_preparation_time(
            debate.config, debate.personalities.affirmative, debate.personalities.negative
        )
        logger.info("Starting preparation round (%.1fs budget)", budget)
        self._listener.on_phase_start(RoundType.PREPARATION)

        visible = debate.config.show_preparation
        deadline = deadline_after(budget)
        affirmative, negative = await asyncio.gather(*(
            self._generate(
                debate,
                position,
                RoundType.PREPARATION,
                self._turn_prompt(debate, position, RoundType.PREPARATION),
                self._context(debate, position, RoundType.PREPARATION),
                deadline,
                stream_to_listener=visible and debate.config.stream_output,
                announce=visible,
            )
            for position in Position
        ))

        debate = self._record_outcomes(debate, RoundType.PREPARATION, affirmative, negative)
        preparation = Round(
            type=RoundType.PREPARATION,
            affirmative_statement=affirmative.statement,
            negative_statement=negative.statement,
            started_at=started,
            completed_at=datetime.now(),
        )
        logger.info("Preparation round complete")
        return replace(debate, rounds=debate.rounds + (preparation,), state=DebateState.PREPARATION)

    async def execute_round(self, debate: Debate, round_type: RoundType) -> Debate:
        """Run one phase: both positions concurrently, moderation if enabled, then advance state."""
        if round_type is RoundType.PREPARATION:
            return await self.execute_preparation(debate)

        target = state_for_round(round_type)
        self._check_transition(debate, target)
        started = datetime.now()
        logger.info("Starting %s round", round_type.value)
        self._listener.on_phase_start(round_type)

        if round_type is RoundType.CROSS_EXAM:
            affirmative, negative = await self._cross_examination(debate)
        else:
            deadline = deadline_after(debate.config.time_limit)
            affirmative, negative = await asyncio.gather(*(
                self._generate(
                    debate,
                    position,
                    round_type,
                    self._turn_prompt(debate, position, round_type),
                    self._context(debate, position, round_type),
                    deadline,
                    stream_to_listener=debate.config.stream_output,
                )
                for position in Position
            ))

        debate = self._record_outcomes(debate, round_type, affirmative, negative)
        statements = PerPosition(affirmative.statement, negative.statement)

        if debate.moderator_context is not None:
            debate, reviews = self._moderate(debate, round_type, statements)
            commentary = await self._round_commentary(debate, round_type, statements, reviews)
            debate = replace(debate, moderator_commentary=debate.moderator_commentary + (commentary,))

        if self._citation_extractor is not None:
            found = tuple(
                citation
                for _, stmt in statements.items()
                if not stmt.is_empty
                for citation in self._citation_extractor(stmt, round_type)
            )
            debate = replace(debate, citations=debate.citations + found)

        completed = Round(
            type=round_type,
            affirmative_statement=statements.affirmative,
            negative_statement=statements.negative,
            started_at=started,
            completed_at=datetime.now(),
        )
        logger.info(
            "%s round complete: affirmative %d words, negative %d words",
            round_type.value, statements.affirmative.word_count, statements.negative.word_count,
        )
        return replace(debate, rounds=debate.rounds + (completed,), state=target)

    async def execute_opening_statements(self, debate: Debate) -> Debate:
        return await self.execute_round(debate, RoundType.OPENING)

    async def execute_rebuttals(self, debate: Debate) -> Debate:
        return await self.execute_round(debate, RoundType.REBUTTAL)

    async def execute_cross_examination(self, debate: Debate) -> Debate:
        return await self.execute_round(debate, RoundType.CROSS_EXAM)

    async def execute_closing_statements(self, debate: Debate) -> Debate:
        return await self.execute_round(debate, RoundType.CLOSING)

    def finalize(self, debate: Debate) -> Debate:
        """Mark a debate whose closing round has run as completed.

        Raises:
            InvalidTransitionError: The closing round has not run, or a round
                is missing a statement for one of the positions.
        """
        self._check_transition(debate, DebateState.COMPLETED)
        incomplete = [rnd.type.value for rnd in debate.rounds if not rnd.is_complete]
        if incomplete:
            raise InvalidTransitionError(
                debate.state.value, DebateState.COMPLETED.value, f"incomplete rounds: {', '.join(incomplete)}"
            )
        logger.info("Debate %s completed with %d rounds", debate.id, len(debate.rounds))
        return replace(debate, state=DebateState.COMPLETED, completed_at=datetime.now())

    # -- internals ---------------------------------------------------------

    @staticmethod
    def _check_transition(debate: Debate, target: DebateState) -> None:
        if target not in VALID_TRANSITIONS[debate.state]:
            raise InvalidTransitionError(debate.state.value, target.value)

    def _turn_prompt(self, debate: Debate, position: Position, round_type: RoundType) -> str:
        return self._with_persona(debate, position, self._prompts.build_round_prompt(round_type, debate.topic, position))

    def _with_persona(self, debate: Debate, position: Position, instruction: str) -> str:
        personality = debate.personalities[position]
        persona = self._prompts.build_debater_prompt(position, personality, personality.tactics)
        return f"{persona}\n\n{instruction}"

    def _context(self, debate: Debate, position: Position, round_type: RoundType) -> DebateContext:
        reminder = self._prompts.build_context_reminder(debate.personalities[position])
        return build_context(debate, position, round_type, reminder)

    def _fail(self, debate: Debate, message: str, round_type: RoundType | None = None) -> NoReturn:
        record = DebateErrorRecord(message=message, state=debate.state, round_type=round_type)
        failed = replace(
            debate,
            state=DebateState.ERROR,
            errors=debate.errors + (record,),
            completed_at=datetime.now(),
        )
        logger.error("Debate %s failed: %s", debate.id, message)
        raise DebateFailedError(message, failed)

    def _record_outcomes(
        self, debate: Debate, round_type: RoundType, affirmative: _Generated, negative: _Generated
    ) -> Debate:
        debate = replace(debate, errors=debate.errors + affirmative.errors + negative.errors)
        if affirmative.failed and negative.failed:
            self._fail(debate, f"Both positions failed in the {round_type.value} round", round_type)
        return debate

    async def _generate(
        self,
        debate: Debate,
        position: Position,
        round_type: RoundType,
        prompt: str,
        context: DebateContext,
        deadline: float,
        *,
        stream_to_listener: bool = True,
        announce: bool = True,
    ) -> _Generated:
        """Produce one statement. Never raises for provider failures or timeouts."""
        provider = debate.providers[position]
        model = provider.get_model_name()
        loop = asyncio.get_running_loop()
        received: list[str] = []

        def forward(chunk: str) -> None:
            received.append(chunk)
            if stream_to_listener:
                self._listener.on_chunk(model, position, chunk)

        async def operation(on_chunk: Callable[[str], None]) -> str:
            if provider.supports_streaming():
                return await provider.generate_response_stream(prompt, context, on_chunk)
            return await provider.generate_response(prompt, context)

        logger.debug("Prompt for %s (%s, %s):\n%s", model, position.value, round_type.value, prompt)

        outcome = None
        failure: ProviderError | None = None
        for attempt in (1, 2):
            try:
                outcome = await run_with_deadline(operation, deadline, forward)
                break
            except ProviderError as exc:
                failure = exc
            except Exception as exc:
                failure = ProviderError(model, f"Unexpected error: {exc}")
            if attempt == 1 and failure.timed_out and not received and loop.time() < deadline:
                logger.warning(
                    "Provider %s timed out in %s round, retrying within the remaining %.1fs",
                    model, round_type.value, deadline - loop.time(),
                )
                continue
            break

        match outcome:
            case Completed(value=text):
                content, status, error = text, StatementOutcome.COMPLETED, None
            case Cancelled(partial=partial):
                content, status, error = partial, StatementOutcome.TIMED_OUT, None
                logger.warning(
                    "%s (%s) reached the %s deadline; keeping %d words",
                    model, position.value, round_type.value, count_words(partial),
                )
                self._listener.on_timeout(model, position, round_type, partial)
            case None:
                assert failure is not None
                content = "".join(received)
                status = StatementOutcome.COMPLETED if content.strip() else StatementOutcome.FAILED
                error = str(failure)
                logger.warning("Provider %s failed in %s round: %s", model, round_type.value, failure)
                self._listener.on_error(model, position, round_type, failure)
            case _:
                assert_never(outcome)

        word_limit = debate.config.word_limit
        content, truncated = enforce_word_limit(content, word_limit)
        if truncated:
            logger.warning("Response from %s exceeded word limit of %d, truncated", model, word_limit)

        statement = Statement(
            model=model,
            position=position,
            content=content,
            word_count=count_words(content),
            generated_at=datetime.now(),
            outcome=status,
            error=error,
        )
        errors: tuple[DebateErrorRecord, ...] = ()
        if error is not None:
            errors = (DebateErrorRecord(
                message=error, state=state_for_round(round_type), round_type=round_type, model=model,
            ),)
        if announce and status is not StatementOutcome.FAILED:
            self._listener.on_complete(statement, round_type)
        return _Generated(statement, errors)

    async def _cross_examination(self, debate: Debate) -> tuple[_Generated, _Generated]:
        """Each exchange: both sides ask concurrently, then both answer concurrently."""
        exchanges: PerPosition[list[tuple[_Generated, _Generated]]] = PerPosition([], [])
        base_contexts = PerPosition(
            self._context(debate, Position.AFFIRMATIVE, RoundType.CROSS_EXAM),
            self._context(debate, Position.NEGATIVE, RoundType.CROSS_EXAM),
        )
        earlier: list[Statement] = []

        for exchange in range(1, debate.config.num_cross_exam_questions + 1):
            contexts = {
                position: replace(
                    base_contexts[position],
                    previous_statements=base_contexts[position].previous_statements + tuple(earlier),
                )
                for position in Position
            }
            deadline = deadline_after(debate.config.time_limit)
            asked = await asyncio.gather(*(
                self._generate(
                    debate,
                    position,
                    RoundType.CROSS_EXAM,
                    self._with_persona(
                        debate, position, self._prompts.build_cross_exam_question(debate.topic, position, exchange)
                    ),
                    contexts[position],
                    deadline,
                    stream_to_listener=False,
                    announce=False,
                )
                for position in Position
            ))
            questions = PerPosition(*asked)

            deadline = deadline_after(debate.config.time_limit)
            answered = await asyncio.gather(*(
                self._generate(
                    debate,
                    position,
                    RoundType.CROSS_EXAM,
                    self._with_persona(
                        debate,
                        position,
                        self._prompts.build_cross_exam_answer(
                            debate.topic,
                            position,
                            questions[position.opponent].statement.content or "(no question was asked)",
                        ),
                    ),
                    contexts[position],
                    deadline,
                    stream_to_listener=False,
                    announce=False,
                )
                for position in Position
            ))
            answers = PerPosition(*answered)

            for position in Position:
                exchanges[position].append((questions[position], answers[position]))
                for step in (questions[position], answers[position.opponent]):
                    if not step.statement.is_empty:
                        earlier.append(step.statement)
            logger.debug("Cross-examination exchange %d complete", exchange)

        return (
            self._combine_exchanges(debate, Position.AFFIRMATIVE, exchanges.affirmative),
            self._combine_exchanges(debate, Position.NEGATIVE, exchanges.negative),
        )

    def _combine_exchanges(
        self, debate: Debate, position: Position, exchanges: list[tuple[_Generated, _Generated]]
    ) -> _Generated:
        steps = [step for pair in exchanges for step in pair]
        outcomes = {step.statement.outcome for step in steps}
        if steps and outcomes == {StatementOutcome.FAILED}:
            status = StatementOutcome.FAILED
            content = ""
        else:
            status = StatementOutcome.TIMED_OUT if StatementOutcome.TIMED_OUT in outcomes else StatementOutcome.COMPLETED
            content = "\n\n".join(
                f"Question: {question.statement.content}\n\nResponse to opponent: {answer.statement.content}"
                for question, answer in exchanges
            )
        errors = tuple(record for step in steps for record in step.errors)
        statement = Statement(
            model=debate.model_name(position),
            position=position,
            content=content,
            # Generated words only; the Question/Response labels are not counted
            word_count=sum(step.statement.word_count for step in steps) if content else 0,
            generated_at=datetime.now(),
            outcome=status,
            error="; ".join(record.message for record in errors) or None,
        )
        if status is not StatementOutcome.FAILED:
            self._listener.on_complete(statement, RoundType.CROSS_EXAM)
        return _Generated(statement, errors)

    def _moderate(
        self, debate: Debate, round_type: RoundType, statements: PerPosition[Statement]
    ) -> tuple[Debate, tuple[ModeratorReview, ...]]:
        context = debate.moderator_context
        assert context is not None
        engine = ModeratorEngine(debate.topic)

        review_rules = context.rules
        if round_type is RoundType.CROSS_EXAM and review_rules.word_limit:
            # Every question and answer in the exchange has its own word budget
            exchanges = max(1, debate.config.num_cross_exam_questions)
            review_rules = replace(review_rules, word_limit=review_rules.word_limit * 2 * exchanges)

        reviews: list[ModeratorReview] = []
        interventions: list[ModeratorIntervention] = []
        for _, statement in statements.items():
            if statement.outcome is StatementOutcome.FAILED:
                continue
            review = engine.review(statement, replace(context, rules=review_rules))
            context, intervention = engine.record(context, review)
            reviews.append(review)
            if intervention is not None:
                interventions.append(intervention)
                self._listener.on_intervention(intervention)

        debate = replace(
            debate,
            moderator_context=context,
            reviews=debate.reviews + tuple(reviews),
            interventions=debate.interventions + tuple(interventions),
        )
        return debate, tuple(reviews)

    async def _round_commentary(
        self,
        debate: Debate,
        round_type: RoundType,
        statements: PerPosition[Statement],
        reviews: Sequence[ModeratorReview],
    ) -> ModeratorCommentary:
        """AI round summary when a moderator model is configured, heuristic otherwise."""
        heuristic = summarize_round(round_type, reviews)
        moderator = self._moderator_provider
        if moderator is None:
            return heuristic

        name = moderator.get_model_name()
        prompt = self._prompts.build_moderator_summary(
            debate.topic, round_type, [statements.affirmative, statements.negative]
        )
        context = DebateContext(topic=debate.topic, position=None, round_type=round_type)
        try:
            outcome = await run_with_deadline(
                lambda _on_chunk: moderator.generate_response(prompt, context),
                deadline_after(debate.config.time_limit),
            )
        except Exception as exc:
            logger.warning("Moderator %s failed on %s round, using heuristic summary: %s", name, round_type.value, exc)
            return heuristic

        match outcome:
            case Completed(value=text) if text.strip():
                return replace(heuristic, round_summary=text.strip(), generated_by=name)
            case Completed():
                logger.warning("Moderator %s returned an empty summary, using heuristic summary", name)
            case Cancelled():
                logger.warning("Moderator %s timed out on %s round, using heuristic summary", name, round_type.value)
            case _:
                assert_never(outcome)
        return heuristic


async def run_debate(
    orchestrator: DebateOrchestrator,
    topic: str,
    config: DebateConfig,
    pool: Sequence[ModelProvider],
    on_round_complete: Callable[[Round], None] | None = None,
) -> Debate:
    """Select two debaters from the pool and run every phase in order.

    Raises:
        ConfigurationError, InsufficientModelsError, PersonalityValidationError:
            Before any round runs.
        DebateFailedError: Both positions failed in one round; carries the
            terminal snapshot.
    """
    first, second = select_models(pool, orchestrator.rng)
    debate = orchestrator.initialize_debate(topic, config, first, second)

    for round_type in (RoundType.PREPARATION, *CONTENT_ROUNDS):
        debate = await orchestrator.execute_round(debate, round_type)
        if on_round_complete:
            on_round_complete(debate.rounds[-1])

    return orchestrator.finalize(debate)
