# cat_engine/stopping_rules.py

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Sequence

from .content_balancer import ContentBalancingConfig
from .errors import ConfigurationError
from .schema import Item, Session

logger = logging.getLogger(__name__)

MAX_QUESTIONS = 25
MIN_QUESTIONS = 15
TARGET_STANDARD_ERROR = 0.3
MAX_TIME_MINUTES = 25.0

# Strand-coverage gate on precision stopping (off unless requested)
REQUIRED_STRAND_COVERAGE = 0.75
MIN_STRANDS_TOUCHED = 3

REASON_MAX_QUESTIONS = "maximum questions reached"
REASON_TIME_LIMIT = "time limit reached"
REASON_POOL_EXHAUSTED = "pool exhausted"
REASON_PRECISION = "target precision achieved"


@dataclass(frozen=True)
class TerminationCriteria:
    max_questions: int = MAX_QUESTIONS
    min_questions: int = MIN_QUESTIONS
    target_standard_error: float = TARGET_STANDARD_ERROR
    max_time_minutes: float = MAX_TIME_MINUTES
    require_strand_coverage: bool = False

    def validate(self) -> "TerminationCriteria":
        if self.min_questions < 0:
            raise ConfigurationError("min_questions must be >= 0", field="min_questions")
        if self.max_questions < max(1, self.min_questions):
            raise ConfigurationError("max_questions must be >= min_questions and >= 1", field="max_questions")
        if self.target_standard_error <= 0:
            raise ConfigurationError("target_standard_error must be > 0", field="target_standard_error")
        if self.max_time_minutes <= 0:
            raise ConfigurationError("max_time_minutes must be > 0", field="max_time_minutes")
        return self


DEFAULT_CRITERIA = TerminationCriteria()


@dataclass(frozen=True)
class TerminationDecision:
    stop: bool
    reason: str


def _strand_coverage_ok(session: Session, content_config: Optional[ContentBalancingConfig]) -> bool:
    if content_config is None or not content_config.strands:
        return True
    required = content_config.strand_names
    covered = sum(1 for s in required if session.strand_counts.get(s, 0) >= content_config.minimum_for(s))
    touched = sum(1 for count in session.strand_counts.values() if count > 0)
    return covered / len(required) >= REQUIRED_STRAND_COVERAGE and touched >= MIN_STRANDS_TOUCHED


def should_terminate(
    session: Session,
    pool: Optional[Sequence[Item]] = None,
    criteria: TerminationCriteria = DEFAULT_CRITERIA,
    now: Optional[datetime] = None,
    content_config: Optional[ContentBalancingConfig] = None,
) -> TerminationDecision:
    """
    Decide after each response whether the session should end.

    Stops on the first rule that holds:
        1) answered >= max_questions
        2) elapsed time >= max_time_minutes
        3) no unanswered item left in the pool
        4) answered >= min_questions and SE <= target
    Precision alone never stops a session before min_questions.
    """
    asked = session.questions_asked

    if asked >= criteria.max_questions:
        return TerminationDecision(True, REASON_MAX_QUESTIONS)

    now = now or datetime.now(timezone.utc)
    elapsed_minutes = (now - session.start_time).total_seconds() / 60.0
    if elapsed_minutes >= criteria.max_time_minutes:
        return TerminationDecision(True, REASON_TIME_LIMIT)

    if pool is not None:
        answered = session.answered_ids
        if all(item.id in answered for item in pool):
            return TerminationDecision(True, REASON_POOL_EXHAUSTED)

    if asked < criteria.min_questions:
        return TerminationDecision(False, "minimum questions not reached")

    if session.standard_error <= criteria.target_standard_error:
        if criteria.require_strand_coverage and not _strand_coverage_ok(session, content_config):
            logger.info(f"Session {session.id}: SE target met but strand coverage incomplete")
            return TerminationDecision(False, "strand coverage incomplete")
        return TerminationDecision(True, REASON_PRECISION)

    logger.debug(
        f"Session {session.id}: questions={asked}, SE={session.standard_error:.3f}, "
        f"strands={len(session.strand_counts)}"
    )
    return TerminationDecision(False, "continuing assessment")
