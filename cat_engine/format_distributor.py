# cat_engine/format_distributor.py

from __future__ import annotations

from typing import Mapping

from .schema import Item, QuestionFormat, Session

DEFAULT_FORMAT_DISTRIBUTION: Mapping[QuestionFormat, float] = {
    QuestionFormat.MULTIPLE_CHOICE: 0.60,
    QuestionFormat.TRUE_FALSE: 0.15,
    QuestionFormat.MATCHING: 0.15,
    QuestionFormat.DRAG_AND_DROP: 0.10,
}

# Target share for a format the distribution does not mention
UNLISTED_FORMAT_SHARE = 0.25
NEUTRAL_SCORE = 0.5


def format_score(item: Item, session: Session, target_distribution: Mapping[QuestionFormat, float]) -> float:
    """
    Score in [0, 1] by how far the item's format lags its target share.

    0.5 is neutral (no history yet, or the format is exactly on target);
    under-represented formats score higher, over-represented lower.
    """
    asked = session.questions_asked
    if asked == 0:
        return NEUTRAL_SCORE

    target = target_distribution.get(item.format, UNLISTED_FORMAT_SHARE)
    observed = session.format_counts.get(item.format.value, 0) / asked
    return max(0.0, min(1.0, NEUTRAL_SCORE + (target - observed)))


def heuristic_format_score(item: Item, session: Session) -> float:
    """Static preference for the less common formats; no per-format counts needed."""
    if session.questions_asked == 0:
        return NEUTRAL_SCORE
    if item.format in (QuestionFormat.MATCHING, QuestionFormat.DRAG_AND_DROP):
        return 0.6
    return NEUTRAL_SCORE
