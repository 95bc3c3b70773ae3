# cat_engine/schema.py

from __future__ import annotations

from dataclasses import dataclass, field, fields, is_dataclass
from datetime import datetime
from enum import Enum, IntEnum
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple


class QuestionFormat(str, Enum):
    MULTIPLE_CHOICE = "multiple_choice"
    TRUE_FALSE = "true_false"
    MATCHING = "matching"
    DRAG_AND_DROP = "drag_and_drop"
    PICTURE_CHOICE = "picture_choice"


class DifficultyLevel(IntEnum):
    VERY_EASY = 1
    EASY = 2
    MEDIUM = 3
    HARD = 4
    VERY_HARD = 5


class SessionStatus(str, Enum):
    CREATED = "created"
    ACTIVE = "active"
    TERMINATED = "terminated"


@dataclass
class Item:
    """
    One question of the item pool, as supplied by the question bank.

    Everything except usage_count is treated as immutable by the engine;
    usage_count is written by the external exposure service only.
    grade_level is optional and enables the ±1 grade band filter.
    """
    id: str
    strand: str
    difficulty: DifficultyLevel
    format: QuestionFormat
    standards: List[str] = field(default_factory=list)
    usage_count: int = 0
    grade_level: Optional[str] = None


@dataclass(frozen=True)
class IRTParams:
    """
    3PL parameters derived for one item:
    - a: discrimination
    - b: difficulty
    - c: guessing (lower asymptote)
    """
    a: float
    b: float
    c: float


@dataclass(frozen=True)
class Response:
    item_id: str
    correct: bool
    time_spent: float  # seconds
    timestamp: datetime


@dataclass(frozen=True)
class StandardPerformance:
    standard: str
    strand: str
    attempted: int
    correct: int

    @property
    def percent_correct(self) -> float:
        return 100.0 * self.correct / self.attempted if self.attempted else 0.0

    @property
    def mastery(self) -> str:
        ratio = self.correct / self.attempted if self.attempted else 0.0
        if ratio >= 0.7:
            return "proficient"
        if ratio >= 0.5:
            return "developing"
        return "needs_support"


@dataclass(frozen=True)
class SessionResult:
    """Values frozen at finalization, consumed by the reporting layer."""
    final_theta: float
    final_standard_error: float
    percentile: int
    performance_level: str
    total_questions: int
    total_correct: int
    strand_scores: Mapping[str, int]
    standards_performance: Tuple[StandardPerformance, ...]
    mastered_standards: Tuple[str, ...]
    gap_standards: Tuple[str, ...]
    completion_time: datetime

    def __post_init__(self):
        object.__setattr__(self, "strand_scores", _frozen_mapping(self.strand_scores))


@dataclass(frozen=True)
class Session:
    """
    Snapshot of one adaptive test. Every transition produces a new Session
    (dataclasses.replace); an instance is never modified after creation.
    Counter mappings are read-only views; hashing uses id, responses and status.
    """
    id: str
    student_id: str
    subject: str
    grade_level: str
    start_time: datetime
    last_update_time: datetime

    theta: float = 0.0
    standard_error: float = 1.0
    theta_history: Tuple[float, ...] = ()
    responses: Tuple[Response, ...] = ()

    # Coverage counters
    strand_counts: Mapping[str, int] = field(default_factory=dict)
    format_counts: Mapping[str, int] = field(default_factory=dict)
    difficulty_counts: Mapping[int, int] = field(default_factory=dict)
    standards_covered: Tuple[str, ...] = ()

    status: SessionStatus = SessionStatus.CREATED
    current_item_id: Optional[str] = None
    termination_reason: Optional[str] = None
    result: Optional[SessionResult] = None

    def __post_init__(self):
        for name in ("strand_counts", "format_counts", "difficulty_counts"):
            object.__setattr__(self, name, _frozen_mapping(getattr(self, name)))

    def __hash__(self) -> int:
        return hash((self.id, self.responses, self.status))

    @property
    def questions_asked(self) -> int:
        return len(self.responses)

    @property
    def answered_ids(self) -> FrozenSet[str]:
        return frozenset(r.item_id for r in self.responses)

    @property
    def total_correct(self) -> int:
        return sum(1 for r in self.responses if r.correct)

    def to_dict(self) -> Dict[str, Any]:
        """Plain JSON-compatible representation for persistence."""
        return _jsonable(self)


def _frozen_mapping(values: Mapping) -> Mapping:
    return MappingProxyType(dict(values))


def _jsonable(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: _jsonable(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Mapping):
        return {str(_jsonable(k)): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value
