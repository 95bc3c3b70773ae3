# tests/test_irt_engine.py

import math

import pytest

from cat_engine.irt_engine import (
    difficulty_to_b,
    discrimination,
    fisher_info,
    guessing,
    item_params,
    prob_correct,
)
from cat_engine.schema import DifficultyLevel, IRTParams, Item, QuestionFormat


def _item(fmt=QuestionFormat.MULTIPLE_CHOICE, usage=0, level=DifficultyLevel.MEDIUM):
    return Item(id="q1", strand="Fractions", difficulty=level, format=fmt, usage_count=usage)


def test_prob_correct_range_and_monotonic():
    thetas = [x / 2 for x in range(-8, 9)]
    for a in (0.5, 1.0, 2.0):
        for c in (0.0, 0.25, 0.5, 0.9):
            for b in (-1.0, 0.0, 1.0):
                probs = [prob_correct(t, a, b, c) for t in thetas]
                for t, p in zip(thetas, probs):
                    assert c < p < 1.0, f"P(θ) outside (c, 1): θ={t}, a={a}, b={b}, c={c}, p={p}"
                for lo, hi in zip(probs, probs[1:]):
                    assert hi > lo, f"P(θ) must increase with θ (a={a}, b={b}, c={c})"


def test_prob_at_difficulty_is_midpoint():
    assert prob_correct(0.5, 1.3, 0.5, 0.2) == pytest.approx(0.2 + 0.8 * 0.5)


def test_fisher_info_peaks_near_difficulty():
    pars = IRTParams(a=1.0, b=0.5, c=0.25)
    grid = [x / 10 for x in range(-40, 41)]
    infos = [fisher_info(t, pars) for t in grid]
    peak = grid[infos.index(max(infos))]

    assert abs(peak - pars.b) <= 0.5, f"Info peak {peak} too far from b={pars.b}"
    assert fisher_info(peak, pars) > fisher_info(pars.b - 2.0, pars)
    assert fisher_info(peak, pars) > fisher_info(pars.b + 2.0, pars)


def test_fisher_info_without_guessing_peaks_at_b():
    pars = IRTParams(a=1.5, b=-1.0, c=0.0)
    assert fisher_info(-1.0, pars) > fisher_info(-0.9, pars)
    assert fisher_info(-1.0, pars) > fisher_info(-1.1, pars)


def test_fisher_info_never_nan_or_inf():
    assert fisher_info(-1000.0, IRTParams(a=1.0, b=0.0, c=0.0)) == 0.0
    assert fisher_info(0.0, IRTParams(a=1.0, b=0.0, c=1.0)) == 0.0
    assert fisher_info(0.0, IRTParams(a=0.0, b=0.0, c=0.2)) == 0.0

    for theta in (-50.0, -4.0, 0.0, 4.0, 50.0):
        info = fisher_info(theta, IRTParams(a=2.0, b=0.0, c=0.25))
        assert math.isfinite(info) and info >= 0.0


def test_discrimination_rules():
    assert discrimination(_item()) == pytest.approx(1.0)
    assert discrimination(_item(usage=101)) == pytest.approx(1.2)
    assert discrimination(_item(usage=100)) == pytest.approx(1.0)
    assert discrimination(_item(fmt=QuestionFormat.MATCHING)) == pytest.approx(1.1)
    assert discrimination(_item(fmt=QuestionFormat.TRUE_FALSE)) == pytest.approx(0.9)
    assert discrimination(_item(fmt=QuestionFormat.MATCHING, usage=500)) == pytest.approx(1.32)


def test_guessing_by_format():
    assert guessing(_item(QuestionFormat.MULTIPLE_CHOICE)) == 0.25
    assert guessing(_item(QuestionFormat.TRUE_FALSE)) == 0.5
    assert guessing(_item(QuestionFormat.MATCHING)) == 0.1
    assert guessing(_item(QuestionFormat.DRAG_AND_DROP)) == 0.1
    assert guessing(_item(QuestionFormat.PICTURE_CHOICE)) == 0.2


def test_difficulty_mapping_is_monotonic():
    bs = [difficulty_to_b(level) for level in DifficultyLevel]
    assert bs == sorted(bs)
    assert bs[0] == -2.0 and bs[-1] == 2.0
    assert difficulty_to_b(3) == 0.0


def test_item_params_combines_rules():
    pars = item_params(_item(fmt=QuestionFormat.TRUE_FALSE, level=DifficultyLevel.HARD))
    assert pars.a == pytest.approx(0.9)
    assert pars.b == 1.0
    assert pars.c == 0.5
