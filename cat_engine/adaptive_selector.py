# cat_engine/adaptive_selector.py

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Mapping, Optional, Sequence, Tuple

from rich.console import Console
from rich.table import Table

from .content_balancer import ContentBalancingConfig, content_score
from .errors import ConfigurationError
from .exposure_control import ExposureCounter, item_exposure_score
from .format_distributor import DEFAULT_FORMAT_DISTRIBUTION, format_score
from .irt_engine import item_information
from .schema import DifficultyLevel, Item, QuestionFormat, Session

logger = logging.getLogger(__name__)
console = Console()

FORMAT_WEIGHT = 0.1
DEFAULT_TOP_K = 5
GRADE_ORDER = ["K", "1", "2", "3", "4", "5", "6", "7", "8", "9", "10", "11", "12"]
MAX_GRADE_DEVIATION = 1


# ============================
# Selection config
# ============================

class SelectionStrategy(str, Enum):
    MAX_INFORMATION = "max_information"
    BALANCED = "balanced"
    CONTENT_FIRST = "content_first"
    EXPOSURE_CONTROLLED = "exposure_controlled"


# (information, content, exposure)
_STRATEGY_WEIGHTS = {
    SelectionStrategy.MAX_INFORMATION: (1.0, 0.0, 0.0),
    SelectionStrategy.BALANCED: (0.6, 0.3, 0.1),
    SelectionStrategy.CONTENT_FIRST: (0.3, 0.6, 0.1),
    SelectionStrategy.EXPOSURE_CONTROLLED: (0.5, 0.2, 0.3),
}


@dataclass(frozen=True)
class SelectionConfig:
    strategy: SelectionStrategy = SelectionStrategy.BALANCED
    information_weight: float = 0.6
    content_weight: float = 0.3
    exposure_weight: float = 0.1
    format_distribution: Mapping[QuestionFormat, float] = field(
        default_factory=lambda: dict(DEFAULT_FORMAT_DISTRIBUTION)
    )
    randomization_factor: float = 0.1
    top_k: int = DEFAULT_TOP_K

    @classmethod
    def for_strategy(cls, strategy: SelectionStrategy, **overrides) -> "SelectionConfig":
        info_w, content_w, exposure_w = _STRATEGY_WEIGHTS[strategy]
        values = dict(
            strategy=strategy,
            information_weight=info_w,
            content_weight=content_w,
            exposure_weight=exposure_w,
        )
        values.update(overrides)
        return cls(**values)

    def validate(self) -> "SelectionConfig":
        for name in ("information_weight", "content_weight", "exposure_weight"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} must be >= 0", field=name)
        if not (0.0 <= self.randomization_factor <= 1.0):
            raise ConfigurationError("randomization_factor must be within [0, 1]", field="randomization_factor")
        if self.top_k < 1:
            raise ConfigurationError("top_k must be >= 1", field="top_k")
        return self


@dataclass(frozen=True)
class ScoredCandidate:
    item: Item
    info_score: float
    content_score: float
    exposure_score: float
    format_score: float
    combined: float


# ============================
# Item selection
# ============================

def score_candidates(
    candidates: Sequence[Item],
    session: Session,
    content_config: ContentBalancingConfig,
    selection_config: SelectionConfig,
    rng: random.Random,
    exposure_counter: Optional[ExposureCounter] = None,
) -> List[ScoredCandidate]:
    """Combined score per candidate, sorted best first."""
    theta = session.theta
    scored: List[ScoredCandidate] = []

    for item in candidates:
        info = min(1.0, item_information(theta, item))
        content = content_score(item, session, content_config)
        exposure = item_exposure_score(item, exposure_counter)
        fmt = format_score(item, session, selection_config.format_distribution)

        combined = (
            info * selection_config.information_weight
            + content * selection_config.content_weight
            + exposure * selection_config.exposure_weight
            + fmt * FORMAT_WEIGHT
        )
        if selection_config.randomization_factor > 0:
            combined += (rng.random() - 0.5) * selection_config.randomization_factor

        scored.append(ScoredCandidate(item, info, content, exposure, fmt, combined))

    scored.sort(key=lambda c: c.combined, reverse=True)
    return scored


def select_next_item(
    pool: Sequence[Item],
    session: Session,
    content_config: ContentBalancingConfig,
    selection_config: Optional[SelectionConfig] = None,
    *,
    rng: Optional[random.Random] = None,
    exposure_counter: Optional[ExposureCounter] = None,
    verbose: bool = False,
) -> Optional[Item]:
    """
    Pick the next item for the session.

    Priority:
        1) Only items not yet answered in this session
        2) Weighted mix of Fisher information at the current θ, content
           coverage, exposure and format balance, plus bounded noise
        3) Uniform draw among the top_k candidates, so selection stays
           near-optimal without being predictable

    Returns None when every item in the pool has been answered.
    """
    selection_config = selection_config or SelectionConfig()
    rng = rng or random.Random()

    answered = session.answered_ids
    candidates = [item for item in pool if item.id not in answered]
    if not candidates:
        logger.debug(f"Session {session.id}: no unanswered items left in pool")
        return None

    scored = score_candidates(candidates, session, content_config, selection_config, rng, exposure_counter)
    top = scored[: min(selection_config.top_k, len(scored))]
    chosen = top[rng.randrange(len(top))]

    if verbose:
        _print_top_candidates(top, chosen)

    logger.debug(
        f"Session {session.id}: selected item {chosen.item.id} "
        f"(info={chosen.info_score:.3f}, content={chosen.content_score:.2f}, "
        f"exposure={chosen.exposure_score:.2f}, format={chosen.format_score:.2f}, "
        f"score={chosen.combined:.3f}) from {len(scored)} candidates"
    )
    return chosen.item


def _print_top_candidates(top: Sequence[ScoredCandidate], chosen: ScoredCandidate) -> None:
    table = Table(title="Top candidates")
    for col in ("#", "Item", "Strand", "Info", "Content", "Exposure", "Format", "Score"):
        table.add_column(col)
    for i, c in enumerate(top, 1):
        marker = "[bold green]*[/bold green]" if c is chosen else ""
        table.add_row(
            f"{i}{marker}", c.item.id, c.item.strand,
            f"{c.info_score:.3f}", f"{c.content_score:.2f}", f"{c.exposure_score:.2f}",
            f"{c.format_score:.2f}", f"{c.combined:.3f}",
        )
    console.print(table)


def select_initial_item(
    pool: Sequence[Item],
    target_difficulty: DifficultyLevel = DifficultyLevel.MEDIUM,
    preferred_strand: Optional[str] = None,
    *,
    rng: Optional[random.Random] = None,
) -> Optional[Item]:
    """
    First item of a session: target difficulty first, widening to ±1 level,
    then the whole pool. Narrow to the preferred strand and to
    multiple-choice (the most familiar format) when such items exist.
    """
    rng = rng or random.Random()

    candidates = [item for item in pool if item.difficulty == target_difficulty]
    if not candidates:
        candidates = [item for item in pool if abs(int(item.difficulty) - int(target_difficulty)) <= 1]
    if not candidates:
        candidates = list(pool)

    if preferred_strand:
        strand_matches = [item for item in candidates if item.strand == preferred_strand]
        if strand_matches:
            candidates = strand_matches

    mc = [item for item in candidates if item.format == QuestionFormat.MULTIPLE_CHOICE]
    if mc:
        candidates = mc

    if not candidates:
        return None
    return rng.choice(candidates)


def adaptive_difficulty_range(session: Session) -> Tuple[DifficultyLevel, DifficultyLevel]:
    """Advisory (min, max) difficulty band for the current θ."""
    theta = session.theta
    if theta < -1.5:
        return DifficultyLevel.VERY_EASY, DifficultyLevel.EASY
    elif theta < -0.5:
        return DifficultyLevel.VERY_EASY, DifficultyLevel.MEDIUM
    elif theta < 0.5:
        return DifficultyLevel.EASY, DifficultyLevel.HARD
    elif theta < 1.5:
        return DifficultyLevel.MEDIUM, DifficultyLevel.VERY_HARD
    else:
        return DifficultyLevel.HARD, DifficultyLevel.VERY_HARD


def under_covered_strands(
    pool: Sequence[Item],
    session: Session,
    required_strands: Sequence[str],
    min_per_strand: int = 2,
) -> List[str]:
    """Required strands whose answered count is still below min_per_strand."""
    return [s for s in required_strands if session.strand_counts.get(s, 0) < min_per_strand]


# ============================
# Grade band
# ============================

def within_grade_band(item_grade: Optional[str], session_grade: str) -> bool:
    """
    True when the item is at most one grade away from the session grade.
    Items without a grade, or grades outside K-12 (e.g. AP courses), always pass.
    """
    if item_grade is None:
        return True
    try:
        item_idx = GRADE_ORDER.index(str(item_grade).upper())
        session_idx = GRADE_ORDER.index(str(session_grade).upper())
    except ValueError:
        return True
    return abs(item_idx - session_idx) <= MAX_GRADE_DEVIATION


def filter_grade_band(items: Sequence[Item], session_grade: str) -> List[Item]:
    """Items within the grade band, or all items when none qualify."""
    in_band = [item for item in items if within_grade_band(item.grade_level, session_grade)]
    if in_band:
        return in_band
    logger.info(f"No items within ±{MAX_GRADE_DEVIATION} grade of {session_grade}; using all {len(items)} items")
    return list(items)
