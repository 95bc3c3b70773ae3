# cat_engine/content_balancer.py

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from .errors import ConfigurationError
from .schema import Item, Session


# ============================
# Content balancing config
# ============================

@dataclass(frozen=True)
class StrandConfig:
    """Coverage rules for one strand: share of the test and a minimum question count."""
    name: str
    target_proportion: float           # 0-1, proportions across strands should sum to 1
    minimum_questions: int
    standards: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ContentBalancingConfig:
    """
    Per-subject content balancing config.
    Immutable for the lifetime of a session.
    """
    strands: Tuple[StrandConfig, ...]
    minimum_questions_per_strand: int = 2
    maximum_questions_per_strand: int = 8
    enforce_coverage: bool = True

    def strand(self, name: str) -> Optional[StrandConfig]:
        for s in self.strands:
            if s.name == name:
                return s
        return None

    def minimum_for(self, name: str) -> int:
        """Questions a strand needs: its own minimum, never below the config-wide minimum."""
        strand_cfg = self.strand(name)
        own = strand_cfg.minimum_questions if strand_cfg is not None else 0
        return max(own, self.minimum_questions_per_strand)

    @property
    def strand_names(self) -> List[str]:
        return [s.name for s in self.strands]

    def validate(self) -> "ContentBalancingConfig":
        """Raise ConfigurationError for a malformed config; return self otherwise."""
        if self.minimum_questions_per_strand < 0:
            raise ConfigurationError(
                f"minimum_questions_per_strand must be >= 0, got {self.minimum_questions_per_strand}",
                field="minimum_questions_per_strand",
            )
        if self.maximum_questions_per_strand < self.minimum_questions_per_strand:
            raise ConfigurationError(
                "maximum_questions_per_strand must not be below minimum_questions_per_strand",
                field="maximum_questions_per_strand",
            )

        seen = set()
        for s in self.strands:
            if s.name in seen:
                raise ConfigurationError(f"Duplicate strand '{s.name}'", field="strands")
            seen.add(s.name)
            if not (0.0 <= s.target_proportion <= 1.0):
                raise ConfigurationError(
                    f"Strand '{s.name}': target_proportion {s.target_proportion} outside [0, 1]",
                    field="target_proportion",
                )
            if s.minimum_questions < 0:
                raise ConfigurationError(
                    f"Strand '{s.name}': minimum_questions must be >= 0, got {s.minimum_questions}",
                    field="minimum_questions",
                )
        return self


# ============================
# Scoring
# ============================

def content_score(item: Item, session: Session, config: ContentBalancingConfig) -> float:
    """
    How much serving this item improves content coverage, in [0, 1].

        strand below its minimum          -> +1.0
        strand below its target share     -> +0.5
        strand at/above the maximum       -> -0.5
        strand not in the config          -> +0.3 (never penalized)
        +0.2 per standard tag not yet covered in this session
    """
    score = 0.0

    strand_cfg = config.strand(item.strand)
    if strand_cfg is not None:
        current = session.strand_counts.get(item.strand, 0)
        target = math.ceil(session.questions_asked * strand_cfg.target_proportion)

        if current < config.minimum_for(item.strand):
            score += 1.0
        elif current < target:
            score += 0.5
        elif current >= config.maximum_questions_per_strand:
            score -= 0.5
    else:
        score += 0.3

    covered = set(session.standards_covered)
    uncovered = [s for s in item.standards if s not in covered]
    score += 0.2 * len(uncovered)

    return max(0.0, min(1.0, score))


def coverage_deficits(session: Session, config: ContentBalancingConfig) -> Dict[str, int]:
    """Questions still missing per configured strand to reach its minimum (see minimum_for)."""
    deficits: Dict[str, int] = {}
    for name in config.strand_names:
        missing = config.minimum_for(name) - session.strand_counts.get(name, 0)
        if missing > 0:
            deficits[name] = missing
    return deficits


# ============================
# Default configs per subject
# ============================

def _strands(*rows: Tuple[str, float, int]) -> Tuple[StrandConfig, ...]:
    return tuple(StrandConfig(name=n, target_proportion=p, minimum_questions=m) for n, p, m in rows)


_MATH_STRANDS = _strands(
    ("Numbers & Operations", 0.25, 3),
    ("Algebra & Algebraic Thinking", 0.25, 3),
    ("Fractions", 0.20, 2),
    ("Geometry", 0.15, 2),
    ("Data & Measurement", 0.15, 2),
)

_READING_STRANDS = _strands(
    ("Key Ideas & Details", 0.30, 4),
    ("Craft & Structure", 0.25, 3),
    ("Vocabulary Acquisition", 0.25, 3),
    ("Phonics & Word Recognition", 0.20, 2),
)

_ELA_STRANDS = _strands(
    ("Language", 0.40, 5),
    ("Writing", 0.35, 4),
    ("Speaking & Listening", 0.25, 3),
)


def make_default_content_config(subject: str) -> ContentBalancingConfig:
    """
    Default config for a subject.
    Unknown subjects fall back to the mathematics strands.
    """
    key = subject.strip().lower()
    if key in ("reading", "reading comprehension"):
        strands = _READING_STRANDS
    elif key in ("ela", "english language arts"):
        strands = _ELA_STRANDS
    else:
        strands = _MATH_STRANDS

    return ContentBalancingConfig(
        strands=strands,
        minimum_questions_per_strand=2,
        maximum_questions_per_strand=8,
        enforce_coverage=True,
    )
