# tests/test_session_engine.py

import dataclasses
import json
import random
from datetime import datetime, timedelta, timezone

import pytest

from cat_engine.ability_estimator import EstimationMethod
from cat_engine.content_balancer import ContentBalancingConfig, StrandConfig
from cat_engine.errors import ConfigurationError, InvalidStateError
from cat_engine.exposure_control import InMemoryExposureCounter
from cat_engine.schema import DifficultyLevel, QuestionFormat, SessionStatus
from cat_engine.session_engine import (
    AdaptiveSessionManager,
    ability_to_percentile,
    ability_to_performance_level,
)
from cat_engine.settings import EngineSettings
from cat_engine.stopping_rules import (
    REASON_MAX_QUESTIONS,
    REASON_POOL_EXHAUSTED,
    REASON_TIME_LIMIT,
    TerminationCriteria,
)

START = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)
ONE_STRAND = ContentBalancingConfig(strands=(StrandConfig("Fractions", 1.0, 2),))


class FakeClock:
    def __init__(self):
        self.now = START

    def __call__(self):
        return self.now


def _manager(pool, **kwargs):
    kwargs.setdefault("content_config", ONE_STRAND)
    kwargs.setdefault("rng", random.Random(11))
    kwargs.setdefault("clock", FakeClock())
    return AdaptiveSessionManager(pool, **kwargs)


def _pool(make_item, n, **kwargs):
    return [make_item(f"q{i:02d}", **kwargs) for i in range(n)]


def _answer(manager, session, correct=True):
    return manager.process_response(session, session.current_item_id, correct, 30.0)


# ============================
# Creation
# ============================

def test_create_session(make_item):
    manager = _manager(_pool(make_item, 5))
    session = manager.create_session("stu-1", "Mathematics", "3")

    assert session.status == SessionStatus.ACTIVE
    assert session.theta == 0.0
    assert session.standard_error == 1.0
    assert session.theta_history == (0.0,)
    assert session.responses == ()
    assert session.strand_counts == {}
    assert session.current_item_id in {item.id for item in manager.pool}
    assert session.start_time == START


def test_create_session_fails_on_empty_pool():
    with pytest.raises(ConfigurationError):
        _manager([]).create_session("stu-1", "Mathematics", "3")


@pytest.mark.parametrize(
    "config",
    [
        ContentBalancingConfig(strands=(StrandConfig("Fractions", 1.5, 2),)),
        ContentBalancingConfig(strands=(StrandConfig("Fractions", 0.5, -1),)),
    ],
)
def test_create_session_fails_on_bad_content_config(make_item, config):
    with pytest.raises(ConfigurationError):
        _manager(_pool(make_item, 3), content_config=config).create_session("stu-1", "Mathematics", "3")


def test_create_session_fails_on_duplicate_ids(make_item):
    pool = [make_item("dup"), make_item("dup")]
    with pytest.raises(ConfigurationError):
        _manager(pool).create_session("stu-1", "Mathematics", "3")


def test_first_item_respects_grade_band(make_item):
    pool = [make_item("g8", grade="8"), make_item("g3", grade="3")]
    for seed in range(5):
        session = _manager(pool, rng=random.Random(seed)).create_session("stu-1", "Mathematics", "3")
        assert session.current_item_id == "g3"


# ============================
# Responses
# ============================

def test_process_response_returns_new_snapshot(make_item):
    manager = _manager(_pool(make_item, 6, standards=["3.NF.1"]))
    session = manager.create_session("stu-1", "Mathematics", "3")
    first_item = session.current_item_id

    updated = _answer(manager, session, correct=True)

    assert session.responses == ()
    assert session.current_item_id == first_item
    assert updated.questions_asked == 1
    assert updated.responses[0].item_id == first_item
    assert updated.theta > 0.0
    assert len(updated.theta_history) == 2
    assert updated.strand_counts == {"Fractions": 1}
    assert updated.format_counts == {QuestionFormat.MULTIPLE_CHOICE.value: 1}
    assert updated.difficulty_counts == {int(DifficultyLevel.MEDIUM): 1}
    assert updated.standards_covered == ("3.NF.1",)
    assert updated.current_item_id not in {None, first_item}

    with pytest.raises(dataclasses.FrozenInstanceError):
        updated.theta = 3.0


def test_answering_same_item_twice_is_rejected(make_item):
    manager = _manager(_pool(make_item, 5))
    session = manager.create_session("stu-1", "Mathematics", "3")
    first_item = session.current_item_id
    session = manager.process_response(session, first_item, True, 10.0)

    with pytest.raises(InvalidStateError):
        manager.process_response(session, first_item, False, 10.0)


def test_unknown_item_is_rejected(make_item):
    manager = _manager(_pool(make_item, 3))
    session = manager.create_session("stu-1", "Mathematics", "3")
    with pytest.raises(InvalidStateError):
        manager.process_response(session, "not-in-pool", True, 10.0)


def test_only_the_presented_item_can_be_answered(make_item):
    counter = InMemoryExposureCounter()
    manager = _manager(_pool(make_item, 6), exposure_counter=counter)
    session = manager.create_session("stu-1", "Mathematics", "3")
    presented = session.current_item_id
    other = next(item.id for item in manager.pool if item.id != presented)

    with pytest.raises(InvalidStateError):
        manager.process_response(session, other, True, 10.0)
    assert counter.snapshot() == {presented: 1}

    updated = manager.process_response(session, presented, True, 10.0)
    assert updated.responses[0].item_id == presented


def test_session_snapshot_counters_are_read_only(make_item):
    manager = _manager(_pool(make_item, 6))
    session = _answer(manager, manager.create_session("stu-1", "Mathematics", "3"))

    with pytest.raises(TypeError):
        session.strand_counts["Fractions"] = 10
    with pytest.raises(TypeError):
        session.format_counts["matching"] = 1
    assert session.strand_counts == {"Fractions": 1}

    assert hash(session) == hash(dataclasses.replace(session))
    assert len({session, dataclasses.replace(session)}) == 1

    final = manager.finalize_session(session)
    with pytest.raises(TypeError):
        final.result.strand_scores["Fractions"] = 0


def test_scenario_strong_student_on_easy_items(make_item):
    pool = _pool(make_item, 20, level=DifficultyLevel.EASY, fmt=QuestionFormat.MULTIPLE_CHOICE)
    manager = _manager(pool)
    session = manager.create_session("stu-1", "Mathematics", "3")

    for _ in range(15):
        session = _answer(manager, session, correct=True)

    assert session.termination_reason is None
    assert session.theta > 1.0

    final = manager.finalize_session(session)
    assert final.result.performance_level == "on_above"
    assert final.result.total_correct == 15
    assert final.result.strand_scores == {"Fractions": 100}


def test_scenario_pool_exhausted_before_minimum(make_item):
    manager = _manager(_pool(make_item, 10))
    session = manager.create_session("stu-1", "Mathematics", "3")

    for i in range(10):
        assert session.termination_reason is None, f"stopped early after {i} answers"
        session = _answer(manager, session, correct=i % 2 == 0)

    assert session.termination_reason == REASON_POOL_EXHAUSTED
    assert session.current_item_id is None

    final = manager.finalize_session(session)
    assert final.status == SessionStatus.TERMINATED
    assert final.result.total_questions == 10


def test_max_questions_stops_session(make_item):
    criteria = TerminationCriteria(max_questions=5, min_questions=3, target_standard_error=0.01)
    manager = _manager(_pool(make_item, 12), criteria=criteria)
    session = manager.create_session("stu-1", "Mathematics", "3")

    while session.termination_reason is None:
        session = _answer(manager, session)

    assert session.questions_asked == 5
    assert session.termination_reason == REASON_MAX_QUESTIONS

    with pytest.raises(InvalidStateError):
        manager.process_response(session, "q11", True, 5.0)


def test_time_limit_stops_session(make_item):
    clock = FakeClock()
    manager = _manager(_pool(make_item, 12), clock=clock)
    session = manager.create_session("stu-1", "Mathematics", "3")
    session = _answer(manager, session)

    clock.now = START + timedelta(minutes=26)
    session = _answer(manager, session)
    assert session.termination_reason == REASON_TIME_LIMIT


def test_forced_coverage_of_lagging_strand(make_item):
    # B needs 2 by its own minimum even though the config-wide minimum is 1
    config = ContentBalancingConfig(
        strands=(StrandConfig("A", 0.5, 1), StrandConfig("B", 0.5, 2)),
        minimum_questions_per_strand=1,
    )
    pool = (
        [make_item(f"A{i}", strand="A") for i in range(4)]
        + [make_item(f"B{i}", strand="B", level=DifficultyLevel.VERY_HARD) for i in range(2)]
        + [make_item(f"C{i}", strand="C", standards=["X.1", "X.2", "X.3"]) for i in range(6)]
    )
    criteria = TerminationCriteria(max_questions=3, min_questions=3)

    for seed in range(10):
        manager = _manager(pool, content_config=config, criteria=criteria, rng=random.Random(seed))
        session = manager.create_session("stu-1", "Mathematics", "3", preferred_strand="A")
        assert session.current_item_id.startswith("A")

        session = _answer(manager, session)
        assert session.current_item_id.startswith("B"), f"seed={seed}: got {session.current_item_id}"
        session = _answer(manager, session)
        assert session.current_item_id.startswith("B"), f"seed={seed}: got {session.current_item_id}"


def test_exposure_recorded_on_presentation(make_item):
    counter = InMemoryExposureCounter()
    manager = _manager(_pool(make_item, 6), exposure_counter=counter)
    session = manager.create_session("stu-1", "Mathematics", "3")
    assert counter.snapshot() == {session.current_item_id: 1}

    session = _answer(manager, session)
    assert sum(counter.snapshot().values()) == 2
    assert counter.snapshot()[session.current_item_id] == 1


# ============================
# Finalization
# ============================

def test_finalize_freezes_results(make_item):
    pool = [make_item(f"q{i}", standards=["S.all", f"S.q{i}"]) for i in range(8)]
    manager = _manager(pool)
    session = manager.create_session("stu-1", "Mathematics", "3")
    for i in range(4):
        session = _answer(manager, session, correct=i != 1)

    final = manager.finalize_session(session)
    result = final.result
    served = [f"S.{r.item_id}" for r in final.responses]

    assert final.status == SessionStatus.TERMINATED
    assert final.termination_reason
    assert final.current_item_id is None
    assert result.final_theta == session.theta
    assert result.percentile == ability_to_percentile(session.theta)
    assert result.total_questions == 4
    assert result.total_correct == 3
    assert result.strand_scores == {"Fractions": 75}
    assert result.mastered_standards == ("S.all", served[0], served[2], served[3])
    assert result.gap_standards == (served[1],)

    with pytest.raises(InvalidStateError):
        manager.process_response(final, "q5", True, 5.0)
    with pytest.raises(InvalidStateError):
        manager.finalize_session(final)


def test_finalized_session_serializes(make_item):
    manager = _manager(_pool(make_item, 6, standards=["3.NF.1"]))
    session = manager.create_session("stu-1", "Mathematics", "3")
    session = _answer(manager, session)
    final = manager.finalize_session(session)

    data = json.loads(json.dumps(final.to_dict()))
    assert data["status"] == "terminated"
    assert data["result"]["total_questions"] == 1
    assert data["start_time"] == START.isoformat()


def test_map_estimator_through_settings(make_item):
    settings = EngineSettings(max_questions=6, min_questions=3, estimation_method=EstimationMethod.MAP, random_seed=5)
    manager = AdaptiveSessionManager.from_settings(_pool(make_item, 10), settings, content_config=ONE_STRAND)

    assert manager.criteria.max_questions == 6
    assert manager.estimator.method == EstimationMethod.MAP

    session = manager.create_session("stu-1", "Mathematics", "3")
    while session.termination_reason is None:
        session = _answer(manager, session, correct=False)
    assert session.questions_asked == 6
    assert session.theta < 0.0


# ============================
# Score conversions
# ============================

@pytest.mark.parametrize(
    "theta, expected",
    [(0.0, 50), (1.0, 84), (-1.0, 16), (2.0, 98), (-4.0, 0), (4.0, 100)],
)
def test_ability_to_percentile(theta, expected):
    assert ability_to_percentile(theta) == expected


def test_percentile_is_monotone_and_bounded():
    values = [ability_to_percentile(t / 10.0) for t in range(-60, 61)]
    assert values == sorted(values)
    assert all(0 <= v <= 100 for v in values)


@pytest.mark.parametrize(
    "theta, level",
    [(-1.0, "far_below"), (-0.26, "far_below"), (-0.25, "below"), (0.51, "below"), (0.52, "on_above"), (2.0, "on_above")],
)
def test_performance_levels(theta, level):
    assert ability_to_performance_level(theta) == level
