"""Tests for debate_arena/models.py."""

import dataclasses
from datetime import datetime

import pytest

from debate_arena.models import (
    Debate,
    DebateConfig,
    PerPosition,
    PersonalityProfile,
    Position,
    Round,
    RoundType,
    Statement,
    StatementOutcome,
)
from tests.conftest import MockProvider


def _statement(position: Position, content: str = "text") -> Statement:
    return Statement(
        model="m",
        position=position,
        content=content,
        word_count=len(content.split()),
        generated_at=datetime.now(),
    )


def test_position_opponent():
    assert Position.AFFIRMATIVE.opponent is Position.NEGATIVE
    assert Position.NEGATIVE.opponent is Position.AFFIRMATIVE


def test_per_position_indexing_and_update():
    store = PerPosition(affirmative=1, negative=2)
    assert store[Position.AFFIRMATIVE] == 1
    assert store[Position.NEGATIVE] == 2

    updated = store.with_value(Position.NEGATIVE, 5)
    assert updated.negative == 5
    assert store.negative == 2  # original untouched
    assert updated.items() == ((Position.AFFIRMATIVE, 1), (Position.NEGATIVE, 5))


def test_per_position_is_frozen():
    store = PerPosition(1, 2)
    with pytest.raises(dataclasses.FrozenInstanceError):
        store.affirmative = 3  # type: ignore[misc]


def test_statement_defaults_to_completed():
    stmt = _statement(Position.AFFIRMATIVE)
    assert stmt.outcome is StatementOutcome.COMPLETED
    assert stmt.error is None
    assert not stmt.is_empty
    assert _statement(Position.AFFIRMATIVE, "   ").is_empty


def test_round_completion_requires_both_statements():
    rnd = Round(type=RoundType.OPENING, affirmative_statement=_statement(Position.AFFIRMATIVE))
    assert not rnd.is_complete
    full = dataclasses.replace(rnd, negative_statement=_statement(Position.NEGATIVE))
    assert full.is_complete
    assert full.statement_for(Position.NEGATIVE).position is Position.NEGATIVE


def test_debate_round_lookup_and_model_name():
    providers = PerPosition(MockProvider("a"), MockProvider("b"))
    opening = Round(type=RoundType.OPENING)
    debate = Debate(
        id="d1",
        topic="t",
        config=DebateConfig(),
        providers=providers,
        personalities=PerPosition(PersonalityProfile(), PersonalityProfile()),
        rounds=(opening,),
    )
    assert debate.round_of(RoundType.OPENING) is opening
    assert debate.round_of(RoundType.CLOSING) is None
    assert debate.model_name(Position.NEGATIVE) == "b"
    assert debate.rule_violations == PerPosition((), ())


def test_default_personality_profile():
    profile = PersonalityProfile()
    assert (profile.civility, profile.manner, profile.research_depth, profile.rhetoric_usage) == (5, 5, 5, 5)
    assert len(profile.tactics) == 1
