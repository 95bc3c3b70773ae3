# cat_engine/session_engine.py

"""
Adaptive session lifecycle: CREATED -> ACTIVE -> TERMINATED.

AdaptiveSessionManager holds the (read-only) item pool and configs for one
subject/grade and drives sessions through their states. It keeps no
per-session state: every call takes a Session snapshot and returns a new one.

Forced strand coverage: when the content config enforces coverage and the
questions left before max_questions are no more than the questions still
owed to under-covered strands, the next item is drawn from those strands only.
"""

from __future__ import annotations

import logging
import math
import random
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

from .ability_estimator import AbilityEstimator, EstimationMethod
from .adaptive_selector import (
    SelectionConfig,
    filter_grade_band,
    select_initial_item,
    select_next_item,
)
from .content_balancer import ContentBalancingConfig, coverage_deficits, make_default_content_config
from .errors import ConfigurationError, InvalidStateError
from .exposure_control import ExposureCounter
from .irt_engine import item_params
from .schema import (
    DifficultyLevel,
    IRTParams,
    Item,
    Response,
    Session,
    SessionResult,
    SessionStatus,
    StandardPerformance,
)
from .settings import EngineSettings
from .stopping_rules import (
    DEFAULT_CRITERIA,
    REASON_POOL_EXHAUSTED,
    TerminationCriteria,
    should_terminate,
)

logger = logging.getLogger(__name__)

STARTING_THETA = 0.0
INITIAL_STANDARD_ERROR = 1.0

# θ cut points ≈ 40th and 70th percentile
FAR_BELOW_CUT = -0.25
ON_ABOVE_CUT = 0.52

MASTERED_PERCENT = 70.0
GAP_PERCENT = 60.0

REASON_FINALIZED_EARLY = "finalized before stopping rule"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================
# Score conversions
# ============================

def ability_to_percentile(theta: float) -> int:
    """round(Φ(θ) · 100) with Φ the standard normal CDF."""
    phi = 0.5 * (1.0 + math.erf(theta / math.sqrt(2.0)))
    return int(round(phi * 100))


def ability_to_performance_level(theta: float) -> str:
    if theta < FAR_BELOW_CUT:
        return "far_below"
    if theta < ON_ABOVE_CUT:
        return "below"
    return "on_above"


# ============================
# Session manager
# ============================

class AdaptiveSessionManager:
    def __init__(
        self,
        pool: Sequence[Item],
        content_config: Optional[ContentBalancingConfig] = None,
        selection_config: Optional[SelectionConfig] = None,
        criteria: TerminationCriteria = DEFAULT_CRITERIA,
        estimator: Optional[AbilityEstimator] = None,
        exposure_counter: Optional[ExposureCounter] = None,
        *,
        starting_theta: float = STARTING_THETA,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """
        Parameters:
            pool: items for one subject/grade, loaded by the question bank
            content_config: strand rules; None = default config for the session subject
            selection_config: score weights and randomization
            criteria: stopping rules
            estimator: θ update method (EAP by default)
            exposure_counter: shared usage counters, recorded on every presentation
            rng: randomness for item selection (seed it for replay)
            clock: source of timestamps
        """
        self.pool: List[Item] = list(pool)
        self._by_id: Dict[str, Item] = {item.id: item for item in self.pool}
        self.content_config = content_config
        self.selection_config = selection_config or SelectionConfig()
        self.criteria = criteria
        self.estimator = estimator or AbilityEstimator(EstimationMethod.EAP)
        self.exposure_counter = exposure_counter
        self.starting_theta = starting_theta
        self.rng = rng or random.Random()
        self.clock = clock

    @classmethod
    def from_settings(
        cls,
        pool: Sequence[Item],
        settings: EngineSettings,
        content_config: Optional[ContentBalancingConfig] = None,
        selection_config: Optional[SelectionConfig] = None,
        exposure_counter: Optional[ExposureCounter] = None,
    ) -> "AdaptiveSessionManager":
        rng = random.Random(settings.random_seed) if settings.random_seed is not None else None
        return cls(
            pool,
            content_config=content_config,
            selection_config=selection_config,
            criteria=settings.termination_criteria(),
            estimator=AbilityEstimator(settings.estimation_method),
            exposure_counter=exposure_counter,
            starting_theta=settings.starting_theta,
            rng=rng,
        )

    # ------------------------------
    # Helpers
    # ------------------------------
    def _content_config_for(self, subject: str) -> ContentBalancingConfig:
        return self.content_config or make_default_content_config(subject)

    def _validate(self, subject: str) -> ContentBalancingConfig:
        if not self.pool:
            raise ConfigurationError("Item pool is empty", field="pool")
        if len(self._by_id) != len(self.pool):
            raise ConfigurationError("Item pool contains duplicate item ids", field="pool")
        self.selection_config.validate()
        self.criteria.validate()
        return self._content_config_for(subject).validate()

    def item(self, item_id: str) -> Item:
        return self._by_id[item_id]

    def _present(self, item: Item) -> None:
        if self.exposure_counter is not None:
            self.exposure_counter.record(item)

    def _answered_params(self, responses: Sequence[Response]) -> List[Tuple[IRTParams, bool]]:
        return [(item_params(self._by_id[r.item_id]), r.correct) for r in responses]

    def _next_item(self, session: Session, content_config: ContentBalancingConfig) -> Optional[Item]:
        answered = session.answered_ids
        candidates = [item for item in self.pool if item.id not in answered]
        if not candidates:
            return None
        candidates = filter_grade_band(candidates, session.grade_level)

        if content_config.enforce_coverage:
            deficits = coverage_deficits(session, content_config)
            lagging = list(deficits)
            owed = sum(deficits.values())
            remaining = self.criteria.max_questions - session.questions_asked
            if lagging and remaining <= owed:
                forced = [item for item in candidates if item.strand in lagging]
                if forced:
                    logger.info(
                        f"Session {session.id}: forcing coverage of {lagging} "
                        f"({owed} questions owed, {remaining} left)"
                    )
                    candidates = forced

        return select_next_item(
            candidates,
            session,
            content_config,
            self.selection_config,
            rng=self.rng,
            exposure_counter=self.exposure_counter,
        )

    # ------------------------------
    # Lifecycle
    # ------------------------------
    def create_session(
        self,
        student_id: str,
        subject: str,
        grade_level: str,
        preferred_strand: Optional[str] = None,
    ) -> Session:
        """
        Start a session at the starting θ with the first item chosen.
        Raises ConfigurationError if the pool or configs are unusable.
        """
        self._validate(subject)
        now = self.clock()

        session = Session(
            id=f"session-{uuid.uuid4().hex}",
            student_id=student_id,
            subject=subject,
            grade_level=grade_level,
            start_time=now,
            last_update_time=now,
            theta=self.starting_theta,
            standard_error=INITIAL_STANDARD_ERROR,
            theta_history=(self.starting_theta,),
        )

        first = select_initial_item(
            filter_grade_band(self.pool, grade_level),
            DifficultyLevel.MEDIUM,
            preferred_strand,
            rng=self.rng,
        )
        # pool is non-empty, so there is always a first item
        self._present(first)

        logger.info(f"Created {session.id} for student {student_id} ({subject}, grade {grade_level}), first item {first.id}")
        return replace(session, status=SessionStatus.ACTIVE, current_item_id=first.id)

    def process_response(
        self,
        session: Session,
        item: Union[Item, str],
        correct: bool,
        time_spent: float,
    ) -> Session:
        """
        Record the answer to the presented item and return the next snapshot: θ and SE re-estimated,
        coverage counters updated, stopping rules evaluated, next item chosen.
        When a stopping rule fires, termination_reason is set and no next item
        is chosen; the caller should then call finalize_session.
        """
        if session.status != SessionStatus.ACTIVE:
            raise InvalidStateError(
                f"Cannot accept a response in status {session.status.value}",
                session_id=session.id,
                status=session.status.value,
            )
        if session.termination_reason is not None:
            raise InvalidStateError(
                f"Session already stopped ({session.termination_reason}); finalize it",
                session_id=session.id,
                status=session.status.value,
            )

        item_id = item if isinstance(item, str) else item.id
        if item_id not in self._by_id:
            raise InvalidStateError(f"Item {item_id} is not part of this pool", session_id=session.id)
        if item_id in session.answered_ids:
            raise InvalidStateError(f"Item {item_id} was already answered", session_id=session.id)
        if session.current_item_id is not None and item_id != session.current_item_id:
            raise InvalidStateError(
                f"Item {item_id} was not presented; the current item is {session.current_item_id}",
                session_id=session.id,
                status=session.status.value,
            )
        answered_item = self._by_id[item_id]

        now = self.clock()
        response = Response(item_id=item_id, correct=bool(correct), time_spent=float(time_spent), timestamp=now)
        responses = session.responses + (response,)

        strand_counts = dict(session.strand_counts)
        strand_counts[answered_item.strand] = strand_counts.get(answered_item.strand, 0) + 1
        format_counts = dict(session.format_counts)
        format_counts[answered_item.format.value] = format_counts.get(answered_item.format.value, 0) + 1
        difficulty_counts = dict(session.difficulty_counts)
        level = int(answered_item.difficulty)
        difficulty_counts[level] = difficulty_counts.get(level, 0) + 1
        standards = session.standards_covered + tuple(
            s for s in dict.fromkeys(answered_item.standards) if s not in session.standards_covered
        )

        estimate = self.estimator.estimate(self._answered_params(responses), start=session.theta)

        updated = replace(
            session,
            responses=responses,
            theta=estimate.theta,
            standard_error=estimate.standard_error,
            theta_history=session.theta_history + (estimate.theta,),
            strand_counts=strand_counts,
            format_counts=format_counts,
            difficulty_counts=difficulty_counts,
            standards_covered=standards,
            last_update_time=now,
            current_item_id=None,
        )

        content_config = self._content_config_for(session.subject)
        decision = should_terminate(updated, self.pool, self.criteria, now=now, content_config=content_config)
        if decision.stop:
            logger.info(
                f"{session.id}: stopping after {updated.questions_asked} questions ({decision.reason}), "
                f"θ={updated.theta:.2f} SE={updated.standard_error:.3f}"
            )
            return replace(updated, termination_reason=decision.reason)

        next_item = self._next_item(updated, content_config)
        if next_item is None:
            return replace(updated, termination_reason=REASON_POOL_EXHAUSTED)

        self._present(next_item)
        return replace(updated, current_item_id=next_item.id)

    def finalize_session(self, session: Session) -> Session:
        """Freeze the final θ and derived scores; the session becomes TERMINATED."""
        if session.status == SessionStatus.TERMINATED:
            raise InvalidStateError("Session is already finalized", session_id=session.id, status=session.status.value)
        if session.status != SessionStatus.ACTIVE:
            raise InvalidStateError(
                f"Cannot finalize a session in status {session.status.value}",
                session_id=session.id,
                status=session.status.value,
            )

        now = self.clock()
        strand_scores = self._strand_scores(session)
        performance = self._standards_performance(session)
        mastered = tuple(p.standard for p in performance if p.percent_correct >= MASTERED_PERCENT)
        gaps = tuple(p.standard for p in performance if p.percent_correct < GAP_PERCENT)

        result = SessionResult(
            final_theta=session.theta,
            final_standard_error=session.standard_error,
            percentile=ability_to_percentile(session.theta),
            performance_level=ability_to_performance_level(session.theta),
            total_questions=session.questions_asked,
            total_correct=session.total_correct,
            strand_scores=strand_scores,
            standards_performance=performance,
            mastered_standards=mastered,
            gap_standards=gaps,
            completion_time=now,
        )

        logger.info(
            f"Finalized {session.id}: θ={result.final_theta:.2f}, percentile={result.percentile}, "
            f"level={result.performance_level}, {result.total_correct}/{result.total_questions} correct"
        )
        return replace(
            session,
            status=SessionStatus.TERMINATED,
            termination_reason=session.termination_reason or REASON_FINALIZED_EARLY,
            current_item_id=None,
            last_update_time=now,
            result=result,
        )

    # ------------------------------
    # Results
    # ------------------------------
    def _strand_scores(self, session: Session) -> Dict[str, int]:
        """Percent correct per strand, rounded."""
        correct: Dict[str, int] = {}
        for r in session.responses:
            strand = self._by_id[r.item_id].strand
            correct[strand] = correct.get(strand, 0) + (1 if r.correct else 0)
        return {
            strand: int(round(100.0 * correct.get(strand, 0) / count)) if count else 0
            for strand, count in session.strand_counts.items()
        }

    def _standards_performance(self, session: Session) -> Tuple[StandardPerformance, ...]:
        attempted: Dict[str, int] = {}
        correct: Dict[str, int] = {}
        strand_of: Dict[str, str] = {}
        for r in session.responses:
            item = self._by_id[r.item_id]
            for standard in dict.fromkeys(item.standards):
                attempted[standard] = attempted.get(standard, 0) + 1
                correct[standard] = correct.get(standard, 0) + (1 if r.correct else 0)
                strand_of.setdefault(standard, item.strand)
        return tuple(
            StandardPerformance(standard=s, strand=strand_of[s], attempted=attempted[s], correct=correct[s])
            for s in attempted
        )
