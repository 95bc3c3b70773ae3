# tests/conftest.py

"""Shared builders for items and session snapshots."""

from datetime import datetime, timezone

import pytest

from cat_engine.schema import (
    DifficultyLevel,
    Item,
    QuestionFormat,
    Response,
    Session,
    SessionStatus,
)

T0 = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


def build_item(
    item_id,
    strand="Fractions",
    level=DifficultyLevel.MEDIUM,
    fmt=QuestionFormat.MULTIPLE_CHOICE,
    standards=None,
    usage=0,
    grade=None,
):
    return Item(
        id=item_id,
        strand=strand,
        difficulty=level,
        format=fmt,
        standards=list(standards or []),
        usage_count=usage,
        grade_level=grade,
    )


def build_session(
    answered_ids=(),
    strand_counts=None,
    format_counts=None,
    standards=(),
    theta=0.0,
    se=1.0,
    start=T0,
):
    responses = tuple(
        Response(item_id=i, correct=True, time_spent=20.0, timestamp=start) for i in answered_ids
    )
    return Session(
        id="session-test",
        student_id="student-1",
        subject="Mathematics",
        grade_level="3",
        start_time=start,
        last_update_time=start,
        theta=theta,
        standard_error=se,
        theta_history=(theta,),
        responses=responses,
        strand_counts=dict(strand_counts or {}),
        format_counts=dict(format_counts or {}),
        standards_covered=tuple(standards),
        status=SessionStatus.ACTIVE,
    )


@pytest.fixture
def make_item():
    return build_item


@pytest.fixture
def make_session():
    return build_session
