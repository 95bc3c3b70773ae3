# tests/test_stopping_rules.py

from datetime import timedelta

import pytest

from cat_engine.content_balancer import ContentBalancingConfig, StrandConfig
from cat_engine.errors import ConfigurationError
from cat_engine.stopping_rules import (
    REASON_MAX_QUESTIONS,
    REASON_POOL_EXHAUSTED,
    REASON_PRECISION,
    REASON_TIME_LIMIT,
    TerminationCriteria,
    should_terminate,
)


def _ids(n):
    return [f"q{i}" for i in range(n)]


def _decide(session, minutes=5, **kwargs):
    return should_terminate(session, now=session.start_time + timedelta(minutes=minutes), **kwargs)


def test_never_stops_on_precision_before_minimum(make_session):
    for asked in range(1, 15):
        decision = _decide(make_session(answered_ids=_ids(asked), se=0.05))
        assert not decision.stop, f"stopped after {asked} questions"


def test_precision_stop_at_minimum(make_session):
    decision = _decide(make_session(answered_ids=_ids(15), se=0.25))
    assert decision.stop
    assert decision.reason == REASON_PRECISION

    assert not _decide(make_session(answered_ids=_ids(15), se=0.45)).stop


def test_max_questions_stops_regardless_of_se(make_session):
    decision = _decide(make_session(answered_ids=_ids(25), se=0.9))
    assert decision.stop
    assert decision.reason == REASON_MAX_QUESTIONS


def test_time_limit(make_session):
    session = make_session(answered_ids=_ids(3), se=0.9)
    assert not _decide(session, minutes=24.99).stop

    decision = _decide(session, minutes=25)
    assert decision.stop
    assert decision.reason == REASON_TIME_LIMIT


def test_pool_exhausted_before_minimum(make_item, make_session):
    pool = [make_item(i) for i in _ids(10)]

    decision = _decide(make_session(answered_ids=_ids(10), se=0.8), pool=pool)
    assert decision.stop
    assert decision.reason == REASON_POOL_EXHAUSTED

    assert not _decide(make_session(answered_ids=_ids(9), se=0.8), pool=pool).stop


def test_strand_coverage_gate(make_session):
    config = ContentBalancingConfig(
        strands=tuple(StrandConfig(name, 0.25, 2) for name in ("A", "B", "C", "D"))
    )
    criteria = TerminationCriteria(require_strand_coverage=True)

    thin = make_session(answered_ids=_ids(15), se=0.2, strand_counts={"A": 13, "B": 2})
    assert not _decide(thin, criteria=criteria, content_config=config).stop
    assert _decide(thin, content_config=config).stop

    broad = make_session(answered_ids=_ids(15), se=0.2, strand_counts={"A": 7, "B": 4, "C": 3, "D": 1})
    decision = _decide(broad, criteria=criteria, content_config=config)
    assert decision.stop
    assert decision.reason == REASON_PRECISION


@pytest.mark.parametrize(
    "kwargs",
    [
        dict(min_questions=-1),
        dict(max_questions=10, min_questions=15),
        dict(max_questions=0, min_questions=0),
        dict(target_standard_error=0.0),
        dict(max_time_minutes=0.0),
    ],
)
def test_invalid_criteria(kwargs):
    with pytest.raises(ConfigurationError):
        TerminationCriteria(**kwargs).validate()
