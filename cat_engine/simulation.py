# cat_engine/simulation.py

"""
Monte-Carlo simulation of screening sessions.

Generates a synthetic item pool, draws examinees with known θ, answers each
presented item with the 3PL probability at the true θ and reports how well
the engine recovers θ, how long tests run and why they stop.
"""

from __future__ import annotations

import logging
import math
import random
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence

from tqdm import tqdm

from .adaptive_selector import SelectionConfig
from .content_balancer import ContentBalancingConfig, make_default_content_config
from .exposure_control import InMemoryExposureCounter
from .irt_engine import item_params, prob_correct
from .schema import DifficultyLevel, Item, QuestionFormat, Session
from .session_engine import AdaptiveSessionManager
from .stopping_rules import DEFAULT_CRITERIA, TerminationCriteria

logger = logging.getLogger(__name__)

# Share of each format in a generated pool
POOL_FORMAT_MIX = {
    QuestionFormat.MULTIPLE_CHOICE: 0.55,
    QuestionFormat.TRUE_FALSE: 0.15,
    QuestionFormat.MATCHING: 0.12,
    QuestionFormat.DRAG_AND_DROP: 0.10,
    QuestionFormat.PICTURE_CHOICE: 0.08,
}


class SimulatedClock:
    """Clock that only moves when told to, so simulated answer times count toward the time limit."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def generate_item_pool(
    n_items: int,
    strands: Sequence[str],
    rng: Optional[random.Random] = None,
    standards_per_strand: int = 3,
    id_prefix: str = "item",
) -> List[Item]:
    """Synthetic pool spread evenly over strands, difficulty drawn around MEDIUM."""
    rng = rng or random.Random()
    formats = list(POOL_FORMAT_MIX)
    format_weights = [POOL_FORMAT_MIX[f] for f in formats]
    levels = list(DifficultyLevel)
    level_weights = [0.15, 0.25, 0.30, 0.20, 0.10]

    items: List[Item] = []
    for i in range(n_items):
        strand = strands[i % len(strands)]
        slug = "".join(ch for ch in strand.upper() if ch.isalnum())[:4]
        standard = f"{slug}.{rng.randint(1, standards_per_strand)}"
        items.append(
            Item(
                id=f"{id_prefix}-{i + 1:04d}",
                strand=strand,
                difficulty=rng.choices(levels, weights=level_weights)[0],
                format=rng.choices(formats, weights=format_weights)[0],
                standards=[standard],
                usage_count=rng.randint(0, 300),
            )
        )
    return items


def simulate_examinee(
    manager: AdaptiveSessionManager,
    true_theta: float,
    rng: random.Random,
    student_id: str = "sim-student",
    subject: str = "Mathematics",
    grade_level: str = "3",
    clock: Optional[SimulatedClock] = None,
) -> Session:
    """Run one session to completion and return the finalized snapshot."""
    session = manager.create_session(student_id, subject, grade_level)

    while session.termination_reason is None:
        item = manager.item(session.current_item_id)
        pars = item_params(item)
        correct = rng.random() < prob_correct(true_theta, pars.a, pars.b, pars.c)
        time_spent = rng.uniform(15.0, 75.0)
        if clock is not None:
            clock.advance(time_spent)
        session = manager.process_response(session, item, correct, time_spent)

    return manager.finalize_session(session)


@dataclass
class SimulationSummary:
    n_examinees: int
    bias: float
    rmse: float
    mean_length: float
    mean_standard_error: float
    stop_reasons: Dict[str, int] = field(default_factory=dict)
    max_exposure_rate: float = 0.0


def run_simulation(
    n_examinees: int = 200,
    pool_size: int = 120,
    subject: str = "Mathematics",
    theta_mean: float = 0.0,
    theta_sd: float = 1.0,
    seed: Optional[int] = None,
    criteria: TerminationCriteria = DEFAULT_CRITERIA,
    content_config: Optional[ContentBalancingConfig] = None,
    selection_config: Optional[SelectionConfig] = None,
    show_progress: bool = True,
) -> SimulationSummary:
    rng = random.Random(seed)
    content_config = content_config or make_default_content_config(subject)
    pool = generate_item_pool(pool_size, content_config.strand_names, rng)
    counter = InMemoryExposureCounter()
    clock = SimulatedClock()

    manager = AdaptiveSessionManager(
        pool,
        content_config=content_config,
        selection_config=selection_config,
        criteria=criteria,
        exposure_counter=counter,
        rng=rng,
        clock=clock,
    )

    errors: List[float] = []
    lengths: List[int] = []
    ses: List[float] = []
    reasons: Counter = Counter()

    for i in tqdm(range(n_examinees), desc="Simulating", disable=not show_progress):
        true_theta = rng.gauss(theta_mean, theta_sd)
        final = simulate_examinee(manager, true_theta, rng, student_id=f"sim-{i + 1}", subject=subject, clock=clock)
        errors.append(final.result.final_theta - true_theta)
        lengths.append(final.result.total_questions)
        if math.isfinite(final.result.final_standard_error):
            ses.append(final.result.final_standard_error)
        reasons[final.termination_reason] += 1

    n = max(1, len(errors))
    presented = counter.snapshot()
    max_exposure = max(presented.values()) / n_examinees if presented and n_examinees else 0.0

    summary = SimulationSummary(
        n_examinees=n_examinees,
        bias=sum(errors) / n,
        rmse=math.sqrt(sum(e * e for e in errors) / n),
        mean_length=sum(lengths) / n,
        mean_standard_error=sum(ses) / len(ses) if ses else float("inf"),
        stop_reasons=dict(reasons),
        max_exposure_rate=max_exposure,
    )
    logger.info(
        f"Simulation done: n={n_examinees}, bias={summary.bias:.3f}, rmse={summary.rmse:.3f}, "
        f"mean length={summary.mean_length:.1f}"
    )
    return summary
