"""Tests for debate_arena/orchestrator.py."""

import dataclasses
import logging
import time

import pytest

from debate_arena.errors import (
    ConfigurationError,
    DebateFailedError,
    InsufficientModelsError,
    InvalidTransitionError,
)
from debate_arena.models import (
    Citation,
    DebateConfig,
    DebateState,
    ModeratorStrictness,
    Position,
    RoundType,
    StatementOutcome,
)
from debate_arena.orchestrator import CONTENT_ROUNDS, DebateOrchestrator, build_context, run_debate
from debate_arena.providers.base import ProviderError
from tests.conftest import MockProvider, RecordingListener

TOPIC = "AI should be regulated"


def _start(orchestrator, config, *providers):
    a, b = providers or (MockProvider("provider_a", "Response from A"), MockProvider("provider_b", "Response from B"))
    return orchestrator.initialize_debate(TOPIC, config, a, b)


async def _through(orchestrator, debate, *round_types):
    for round_type in round_types:
        debate = await orchestrator.execute_round(debate, round_type)
    return debate


# -- initialization ------------------------------------------------------------


def test_initialize_debate(orchestrator, fast_config):
    debate = _start(orchestrator, fast_config)
    assert debate.state is DebateState.INITIALIZED
    assert debate.rounds == ()
    assert debate.topic == TOPIC
    assert {debate.model_name(p) for p in Position} == {"provider_a", "provider_b"}
    assert debate.moderator_context is None
    assert debate.id


def test_initialize_rejects_empty_topic(orchestrator, fast_config):
    with pytest.raises(ConfigurationError) as exc_info:
        orchestrator.initialize_debate("   ", fast_config, MockProvider("a"), MockProvider("b"))
    assert "topic" in exc_info.value.invalid_params


def test_initialize_rejects_invalid_config(orchestrator):
    with pytest.raises(ConfigurationError) as exc_info:
        orchestrator.initialize_debate(TOPIC, DebateConfig(time_limit=0), MockProvider("a"), MockProvider("b"))
    assert "time_limit" in exc_info.value.invalid_params


def test_initialize_rejects_identical_models(orchestrator, fast_config):
    provider = MockProvider("same")
    with pytest.raises(InsufficientModelsError):
        orchestrator.initialize_debate(TOPIC, fast_config, provider, provider)


def test_initialize_with_moderator(orchestrator, fast_config):
    config = dataclasses.replace(fast_config, moderator_enabled=True, moderator_strictness=ModeratorStrictness.STRICT)
    debate = _start(orchestrator, config)
    assert debate.moderator_context is not None
    assert debate.moderator_context.strictness is ModeratorStrictness.STRICT
    assert debate.moderator_context.rules.word_limit == config.word_limit


# -- state machine ---------------------------------------------------------------


async def test_rounds_must_run_in_order(orchestrator, fast_config):
    debate = _start(orchestrator, fast_config)
    with pytest.raises(InvalidTransitionError):
        await orchestrator.execute_round(debate, RoundType.OPENING)

    debate = await orchestrator.execute_preparation(debate)
    with pytest.raises(InvalidTransitionError):
        await orchestrator.execute_round(debate, RoundType.CLOSING)
    with pytest.raises(InvalidTransitionError):
        await orchestrator.execute_preparation(debate)


def test_finalize_requires_closing(orchestrator, fast_config):
    debate = _start(orchestrator, fast_config)
    with pytest.raises(InvalidTransitionError):
        orchestrator.finalize(debate)


async def test_finalize_rejects_incomplete_round(orchestrator, fast_config):
    debate = _start(orchestrator, fast_config)
    debate = await _through(orchestrator, debate, RoundType.PREPARATION, *CONTENT_ROUNDS)
    closing = dataclasses.replace(debate.rounds[-1], negative_statement=None)
    broken = dataclasses.replace(debate, rounds=debate.rounds[:-1] + (closing,))

    with pytest.raises(InvalidTransitionError, match="incomplete rounds: closing"):
        orchestrator.finalize(broken)
    assert orchestrator.finalize(debate).state is DebateState.COMPLETED


async def test_phase_methods_do_not_modify_input(orchestrator, fast_config):
    debate = _start(orchestrator, fast_config)
    prepared = await orchestrator.execute_preparation(debate)
    assert debate.state is DebateState.INITIALIZED
    assert debate.rounds == ()
    assert prepared.state is DebateState.PREPARATION


async def test_full_debate_runs_every_phase(orchestrator, listener, fast_config, two_mock_providers):
    seen = []
    debate = await run_debate(orchestrator, TOPIC, fast_config, two_mock_providers, seen.append)

    order = [RoundType.PREPARATION, RoundType.OPENING, RoundType.REBUTTAL, RoundType.CROSS_EXAM, RoundType.CLOSING]
    assert debate.state is DebateState.COMPLETED
    assert debate.completed_at is not None
    assert [r.type for r in debate.rounds] == order
    assert [r.type for r in seen] == order
    assert listener.phases == order
    assert all(r.is_complete for r in debate.rounds)
    assert debate.errors == ()


async def test_run_debate_needs_two_models(orchestrator, fast_config):
    with pytest.raises(InsufficientModelsError):
        await run_debate(orchestrator, TOPIC, fast_config, [MockProvider("only")])


# -- preparation and deadlines ------------------------------------------------------


async def test_preparation_is_bounded_by_shared_deadline(orchestrator, fast_config):
    config = dataclasses.replace(fast_config, preparation_time=1)
    slow_a, slow_b = MockProvider("a", "notes", delay=2), MockProvider("b", "notes", delay=2)
    debate = _start(orchestrator, config, slow_a, slow_b)

    start = time.monotonic()
    debate = await orchestrator.execute_preparation(debate)
    elapsed = time.monotonic() - start

    assert elapsed <= 3
    assert debate.state is DebateState.PREPARATION
    assert [r.type for r in debate.rounds] == [RoundType.PREPARATION]
    for position in Position:
        stmt = debate.rounds[0].statement_for(position)
        assert stmt.outcome is StatementOutcome.TIMED_OUT
        assert stmt.content == ""
    assert slow_a.cancelled == 1
    assert slow_b.cancelled == 1


async def test_fast_preparation_finishes_early(orchestrator):
    config = DebateConfig(preparation_time=5)
    debate = _start(orchestrator, config)

    start = time.monotonic()
    debate = await orchestrator.execute_preparation(debate)

    assert time.monotonic() - start < 2
    prep = debate.round_of(RoundType.PREPARATION)
    assert prep.affirmative_statement.outcome is StatementOutcome.COMPLETED
    assert prep.completed_at is not None


async def test_hidden_preparation_is_not_announced(orchestrator, listener, fast_config):
    config = dataclasses.replace(fast_config, show_preparation=False)
    debate = _start(orchestrator, config)
    await orchestrator.execute_preparation(debate)
    assert listener.completed == []
    assert listener.chunks == []


async def test_statement_timeout_keeps_partial_text(orchestrator, listener, fast_config):
    config = dataclasses.replace(fast_config, time_limit=0.5)
    words = " ".join(f"w{i}" for i in range(20))
    slow = MockProvider("slow", words, delay=6, streaming=True)
    debate = _start(orchestrator, config, slow, MockProvider("fast", "Quick answer"))
    debate = await _through(orchestrator, debate, RoundType.PREPARATION, RoundType.OPENING)

    position = next(p for p in Position if debate.model_name(p) == "slow")
    stmt = debate.round_of(RoundType.OPENING).statement_for(position)
    assert stmt.outcome is StatementOutcome.TIMED_OUT
    assert words.startswith(stmt.content)
    assert stmt.word_count < 20
    assert debate.round_of(RoundType.OPENING).statement_for(position.opponent).content == "Quick answer"
    assert any(t[0] == "slow" and t[2] is RoundType.OPENING for t in listener.timeouts)
    assert debate.state is DebateState.OPENING_STATEMENTS


# -- failures --------------------------------------------------------------------


async def test_single_failure_does_not_stop_debate(orchestrator, listener, fast_config):
    broken = MockProvider("broken", fail=True)
    debate = await run_debate(orchestrator, TOPIC, fast_config, [broken, MockProvider("ok", "Fine")])

    assert debate.state is DebateState.COMPLETED
    position = next(p for p in Position if debate.model_name(p) == "broken")
    opening = debate.round_of(RoundType.OPENING).statement_for(position)
    assert opening.outcome is StatementOutcome.FAILED
    assert opening.content == ""
    assert "Simulated failure" in opening.error
    assert any(e.model == "broken" for e in debate.errors)
    assert listener.errors


async def test_both_failing_raises_with_error_snapshot(orchestrator, fast_config):
    a, b = MockProvider("a", "ok"), MockProvider("b", "ok")
    debate = _start(orchestrator, fast_config, a, b)
    debate = await orchestrator.execute_preparation(debate)
    a.fail = b.fail = True

    with pytest.raises(DebateFailedError) as exc_info:
        await orchestrator.execute_round(debate, RoundType.OPENING)

    failed = exc_info.value.debate
    assert failed.state is DebateState.ERROR
    assert [r.type for r in failed.rounds] == [RoundType.PREPARATION]
    assert failed.errors[-1].round_type is RoundType.OPENING
    assert failed.completed_at is not None


async def test_unexpected_exception_is_wrapped(orchestrator, fast_config):
    odd = MockProvider("odd", error=RuntimeError("socket closed"))
    debate = _start(orchestrator, fast_config, odd, MockProvider("ok", "Fine"))
    debate = await orchestrator.execute_preparation(debate)

    position = next(p for p in Position if debate.model_name(p) == "odd")
    stmt = debate.rounds[0].statement_for(position)
    assert stmt.outcome is StatementOutcome.FAILED
    assert "Unexpected error: socket closed" in stmt.error


async def test_mid_stream_failure_keeps_received_text(orchestrator, fast_config):
    flaky = MockProvider("flaky", "one two three four", streaming=True, fail_after_chunks=2)
    debate = _start(orchestrator, fast_config, flaky, MockProvider("ok", "Fine"))
    debate = await orchestrator.execute_preparation(debate)

    position = next(p for p in Position if debate.model_name(p) == "flaky")
    stmt = debate.rounds[0].statement_for(position)
    assert stmt.content == "one two "
    assert stmt.outcome is StatementOutcome.COMPLETED
    assert "Stream dropped" in stmt.error


class _TimesOutOnce(MockProvider):
    async def generate_response(self, prompt, context):
        if self.calls == 0:
            self.calls += 1
            raise ProviderError(self.get_model_name(), "Request timed out", timed_out=True)
        return await super().generate_response(prompt, context)


async def test_provider_timeout_is_retried_once(orchestrator, fast_config):
    flaky = _TimesOutOnce("flaky", "Second try")
    debate = _start(orchestrator, fast_config, flaky, MockProvider("ok", "Fine"))
    debate = await orchestrator.execute_preparation(debate)

    position = next(p for p in Position if debate.model_name(p) == "flaky")
    stmt = debate.rounds[0].statement_for(position)
    assert flaky.calls == 2
    assert stmt.content == "Second try"
    assert stmt.error is None


# -- content rules -----------------------------------------------------------------


async def test_word_limit_truncates_and_warns(orchestrator, fast_config, caplog):
    config = dataclasses.replace(fast_config, word_limit=5)
    long = MockProvider("long", " ".join(["word"] * 20))
    debate = _start(orchestrator, config, long, MockProvider("short", "Brief"))

    with caplog.at_level(logging.WARNING, logger="debate_arena.orchestrator"):
        debate = await orchestrator.execute_preparation(debate)

    position = next(p for p in Position if debate.model_name(p) == "long")
    stmt = debate.rounds[0].statement_for(position)
    assert stmt.word_count == 5
    assert stmt.content.endswith("...")
    assert "exceeded word limit of 5" in caplog.text


async def test_streaming_chunks_reach_listener(orchestrator, listener, fast_config):
    a = MockProvider("a", "alpha beta gamma", streaming=True)
    b = MockProvider("b", "delta epsilon", streaming=True)
    debate = _start(orchestrator, fast_config, a, b)
    await orchestrator.execute_preparation(debate)

    by_model = {}
    for model, _, chunk in listener.chunks:
        by_model.setdefault(model, []).append(chunk)
    assert by_model == {"a": ["alpha ", "beta ", "gamma"], "b": ["delta ", "epsilon"]}


async def test_streaming_disabled_suppresses_chunks(orchestrator, listener, fast_config):
    config = dataclasses.replace(fast_config, stream_output=False)
    debate = _start(orchestrator, config, MockProvider("a", "x y", streaming=True), MockProvider("b", "z", streaming=True))
    await orchestrator.execute_preparation(debate)
    assert listener.chunks == []
    assert len(listener.completed) == 2


async def test_context_follows_round_rules(orchestrator, fast_config):
    def echo(name):
        return lambda prompt, context: f"{name} {context.round_type.value}"

    a, b = MockProvider("a", echo("a")), MockProvider("b", echo("b"))
    debate = _start(orchestrator, fast_config, a, b)
    debate = await _through(
        orchestrator, debate, RoundType.PREPARATION, RoundType.OPENING, RoundType.REBUTTAL
    )

    affirmative = debate.providers.affirmative
    opening_ctx, rebuttal_ctx = affirmative.contexts[1], affirmative.contexts[2]
    negative_opening = debate.round_of(RoundType.OPENING).negative_statement

    assert opening_ctx.round_type is RoundType.OPENING
    assert opening_ctx.previous_statements == ()
    assert opening_ctx.preparation_material == f"{affirmative.get_model_name()} preparation"
    assert rebuttal_ctx.previous_statements == (negative_opening,)
    assert rebuttal_ctx.personality_reminder.startswith("Remember your debating style")


async def test_closing_context_sees_all_content_rounds(orchestrator, fast_config):
    debate = _start(orchestrator, fast_config)
    debate = await _through(
        orchestrator, debate,
        RoundType.PREPARATION, RoundType.OPENING, RoundType.REBUTTAL, RoundType.CROSS_EXAM,
    )
    context = build_context(debate, Position.NEGATIVE, RoundType.CLOSING)
    assert len(context.previous_statements) == 6
    assert context.position is Position.NEGATIVE


async def test_cross_examination_combines_questions_and_answers(orchestrator, fast_config):
    a, b = MockProvider("a", "Question or answer from A"), MockProvider("b", "Question or answer from B")
    debate = _start(orchestrator, fast_config, a, b)
    debate = await _through(
        orchestrator, debate,
        RoundType.PREPARATION, RoundType.OPENING, RoundType.REBUTTAL, RoundType.CROSS_EXAM,
    )

    cross = debate.round_of(RoundType.CROSS_EXAM)
    assert debate.state is DebateState.CROSS_EXAMINATION
    for position in Position:
        stmt = cross.statement_for(position)
        assert stmt.content.startswith("Question: ")
        assert "Response to opponent: " in stmt.content
        assert stmt.outcome is StatementOutcome.COMPLETED
    # The answer prompt quotes the opponent's question
    assert "Question or answer from B" in a.prompts[-1]
    assert "Question or answer from A" in b.prompts[-1]


async def test_cross_examination_within_word_limit_is_not_flagged(orchestrator, fast_config):
    config = dataclasses.replace(
        fast_config,
        word_limit=5,
        num_cross_exam_questions=2,
        moderator_enabled=True,
        moderator_strictness=ModeratorStrictness.STRICT,
    )
    a = MockProvider("a", "Regulation keeps AI systems safe")
    b = MockProvider("b", "Regulation slows AI research down")
    debate = _start(orchestrator, config, a, b)
    debate = await _through(
        orchestrator, debate,
        RoundType.PREPARATION, RoundType.OPENING, RoundType.REBUTTAL, RoundType.CROSS_EXAM,
    )

    cross = debate.round_of(RoundType.CROSS_EXAM)
    for position in Position:
        # two questions and two answers of five words each; labels are not counted
        assert cross.statement_for(position).word_count == 20
    cross_reviews = debate.reviews[-2:]
    assert {r.statement.word_count for r in cross_reviews} == {20}
    assert all(r.violations == () for r in cross_reviews)
    assert debate.interventions == ()


async def test_zero_cross_exam_questions(orchestrator, fast_config):
    config = dataclasses.replace(fast_config, num_cross_exam_questions=0)
    debate = _start(orchestrator, config)
    debate = await _through(
        orchestrator, debate,
        RoundType.PREPARATION, RoundType.OPENING, RoundType.REBUTTAL, RoundType.CROSS_EXAM,
    )
    cross = debate.round_of(RoundType.CROSS_EXAM)
    assert cross.affirmative_statement.content == ""
    assert cross.affirmative_statement.outcome is StatementOutcome.COMPLETED


# -- moderation ------------------------------------------------------------------------


async def test_moderator_intervenes_on_personal_attack(orchestrator, listener, fast_config):
    config = dataclasses.replace(fast_config, moderator_enabled=True, moderator_strictness=ModeratorStrictness.STRICT)
    a = MockProvider("a", "My opponent is an idiot.")
    b = MockProvider("b", "My opponent is a liar.")
    debate = _start(orchestrator, config, a, b)
    debate = await _through(orchestrator, debate, RoundType.PREPARATION, RoundType.OPENING)

    assert len(debate.interventions) == 2
    assert len(listener.interventions) == 2
    assert {i.target for i in debate.interventions} == set(Position)
    assert debate.moderator_context.intervention_count.affirmative == 1
    assert debate.moderator_context.intervention_count.negative == 1
    assert len(debate.reviews) == 2
    [commentary] = debate.moderator_commentary
    assert commentary.round_type is RoundType.OPENING
    assert commentary.generated_by == "heuristic"


async def test_moderator_skips_failed_statements(orchestrator, fast_config):
    config = dataclasses.replace(fast_config, moderator_enabled=True)
    debate = _start(orchestrator, config, MockProvider("broken", fail=True), MockProvider("ok", "Fine"))
    debate = await _through(orchestrator, debate, RoundType.PREPARATION, RoundType.OPENING)
    assert [r.statement.model for r in debate.reviews] == ["ok"]


async def test_ai_moderator_writes_round_summary(prompt_builder, fast_config):
    judge = MockProvider("judge", "Both sides stayed on topic.")
    orchestrator = DebateOrchestrator(prompt_builder, moderator_provider=judge)
    config = dataclasses.replace(fast_config, moderator_enabled=True)
    debate = _start(orchestrator, config)
    debate = await _through(orchestrator, debate, RoundType.PREPARATION, RoundType.OPENING)

    [commentary] = debate.moderator_commentary
    assert commentary.round_summary == "Both sides stayed on topic."
    assert commentary.generated_by == "judge"
    assert judge.contexts[0].position is None
    assert TOPIC in judge.prompts[0]


async def test_ai_moderator_failure_falls_back_to_heuristic(prompt_builder, fast_config):
    judge = MockProvider("judge", fail=True)
    orchestrator = DebateOrchestrator(prompt_builder, moderator_provider=judge)
    config = dataclasses.replace(fast_config, moderator_enabled=True)
    debate = _start(orchestrator, config)
    debate = await _through(orchestrator, debate, RoundType.PREPARATION, RoundType.OPENING)

    [commentary] = debate.moderator_commentary
    assert commentary.generated_by == "heuristic"
    assert debate.state is DebateState.OPENING_STATEMENTS


async def test_moderator_disabled_records_nothing(orchestrator, fast_config, two_mock_providers):
    debate = await run_debate(orchestrator, TOPIC, fast_config, two_mock_providers)
    assert debate.reviews == ()
    assert debate.interventions == ()
    assert debate.moderator_commentary == ()


# -- citations ------------------------------------------------------------------------------


async def test_citation_extractor_runs_on_content_rounds(prompt_builder, fast_config):
    calls = []

    def extract(statement, round_type):
        calls.append((statement.position, round_type))
        return [Citation(
            id=f"{statement.position.value}-{round_type.value}",
            text="OECD report",
            type="general",
            model=statement.model,
            position=statement.position,
            round_type=round_type,
        )]

    orchestrator = DebateOrchestrator(prompt_builder, listener=RecordingListener(), citation_extractor=extract)
    debate = _start(orchestrator, fast_config)
    debate = await _through(orchestrator, debate, RoundType.PREPARATION, RoundType.OPENING)

    assert len(debate.citations) == 2
    assert {c.round_type for c in debate.citations} == {RoundType.OPENING}
    assert all(rt is RoundType.OPENING for _, rt in calls)
