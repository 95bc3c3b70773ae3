# cat_engine/irt_engine.py

import math
from typing import Dict

from .schema import DifficultyLevel, IRTParams, Item, QuestionFormat

THETA_MIN, THETA_MAX = -4.0, 4.0

# Discrimination bounds and the usage level after which an item counts as well calibrated
A_MIN, A_MAX = 0.5, 2.0
CALIBRATED_USAGE = 100

GUESSING_BY_FORMAT: Dict[QuestionFormat, float] = {
    QuestionFormat.MULTIPLE_CHOICE: 0.25,
    QuestionFormat.TRUE_FALSE: 0.5,
    QuestionFormat.MATCHING: 0.1,
    QuestionFormat.DRAG_AND_DROP: 0.1,
}
DEFAULT_GUESSING = 0.2

# Difficulty level -> b, evenly spaced over [-2, 2]
B_BY_DIFFICULTY: Dict[DifficultyLevel, float] = {
    DifficultyLevel.VERY_EASY: -2.0,
    DifficultyLevel.EASY: -1.0,
    DifficultyLevel.MEDIUM: 0.0,
    DifficultyLevel.HARD: 1.0,
    DifficultyLevel.VERY_HARD: 2.0,
}


def sigmoid_stable(x: float) -> float:
    """
    Numerically stable sigmoid: avoids overflow of exp(x)
    """
    if x >= 0:
        z = math.exp(-x)
        return 1.0 / (1.0 + z)
    else:
        z = math.exp(x)
        return z / (1.0 + z)


def prob_correct(theta: float, a: float, b: float, c: float) -> float:
    """Probability of a correct answer under the 3PL model."""
    s = sigmoid_stable(a * (theta - b))
    return c + (1.0 - c) * s


def dprob_dtheta(theta: float, a: float, b: float, c: float) -> float:
    """Derivative with respect to θ."""
    s = sigmoid_stable(a * (theta - b))
    return (1.0 - c) * a * s * (1.0 - s)


def fisher_info(theta: float, pars: IRTParams) -> float:
    """
    Item information a²·q·p*² / (p·(1-c)²) with p* = (p-c)/(1-c).

    Any non-finite intermediate (p ≈ c, p ≈ 0) yields 0 rather than NaN/Inf,
    so a test in progress can always continue.
    """
    a, b, c = pars.a, pars.b, pars.c
    if a <= 0 or not (0 <= c < 1):
        return 0.0

    p = prob_correct(theta, a, b, c)
    q = 1.0 - p
    try:
        p_star = (p - c) / (1.0 - c)
        info = (a * a * q * p_star * p_star) / (p * (1.0 - c) * (1.0 - c))
    except ZeroDivisionError:
        return 0.0
    return info if math.isfinite(info) else 0.0


# ============================
# Item parameters derived from metadata
# ============================

def discrimination(item: Item) -> float:
    a = 1.0
    if item.usage_count > CALIBRATED_USAGE:
        a *= 1.2
    if item.format == QuestionFormat.MATCHING:
        a *= 1.1
    elif item.format == QuestionFormat.TRUE_FALSE:
        a *= 0.9
    return max(A_MIN, min(A_MAX, a))


def guessing(item: Item) -> float:
    return GUESSING_BY_FORMAT.get(item.format, DEFAULT_GUESSING)


def difficulty_to_b(level: DifficultyLevel) -> float:
    return B_BY_DIFFICULTY[DifficultyLevel(level)]


def item_params(item: Item) -> IRTParams:
    return IRTParams(a=discrimination(item), b=difficulty_to_b(item.difficulty), c=guessing(item))


def item_information(theta: float, item: Item) -> float:
    return fisher_info(theta, item_params(item))
