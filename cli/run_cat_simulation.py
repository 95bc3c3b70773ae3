import os
import sys
import random
import logging

from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, BASE_DIR)

from cat_engine import AbilityEstimator, AdaptiveSessionManager, EngineSettings, make_default_content_config  # noqa: E402
from cat_engine.errors import ConfigurationError  # noqa: E402
from cat_engine.exposure_control import InMemoryExposureCounter  # noqa: E402
from cat_engine.simulation import SimulatedClock, generate_item_pool, run_simulation, simulate_examinee  # noqa: E402

RESET = "\033[0m"
BOLD = "\033[1m"
GREEN = "\033[92m"
YELLOW = "\033[93m"
RED = "\033[91m"
CYAN = "\033[96m"
MAGENTA = "\033[95m"

SUBJECTS = ["Mathematics", "Reading", "ELA"]

console = Console()


def _ask_int(prompt: str, default: int) -> int:
    raw = input(prompt).strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        print(f"{YELLOW}Invalid number, using {default}.{RESET}")
        return default


def _ask_float(prompt: str, default: float) -> float:
    raw = input(prompt).strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        print(f"{YELLOW}Invalid number, using {default}.{RESET}")
        return default


def choose_subject() -> str:
    print(f"{MAGENTA}Subjects:{RESET}")
    for i, s in enumerate(SUBJECTS, 1):
        print(f"  {CYAN}{i}.{RESET} {s}")
    raw = input("\nPick a subject (Enter = Mathematics): ").strip()
    if raw.isdigit() and 1 <= int(raw) <= len(SUBJECTS):
        return SUBJECTS[int(raw) - 1]
    return SUBJECTS[0]


def trace_single_session(settings: EngineSettings, subject: str) -> None:
    rng = random.Random(settings.random_seed)
    config = make_default_content_config(subject)
    pool = generate_item_pool(_ask_int("Pool size (Enter = 80): ", 80), config.strand_names, rng)
    true_theta = _ask_float("True ability θ of the simulated student (Enter = 0.0): ", 0.0)

    clock = SimulatedClock()
    manager = AdaptiveSessionManager(
        pool,
        content_config=config,
        criteria=settings.termination_criteria(),
        estimator=AbilityEstimator(settings.estimation_method),
        exposure_counter=InMemoryExposureCounter(),
        starting_theta=settings.starting_theta,
        rng=rng,
        clock=clock,
    )

    final = simulate_examinee(manager, true_theta, rng, subject=subject, clock=clock)
    result = final.result

    table = Table(title=f"Session {final.id}")
    table.add_column("#")
    table.add_column("Item")
    table.add_column("Strand")
    table.add_column("Format")
    table.add_column("Level")
    table.add_column("Correct")
    table.add_column("θ after")
    for i, (resp, theta) in enumerate(zip(final.responses, final.theta_history[1:]), 1):
        item = manager.item(resp.item_id)
        mark = "[green]yes[/green]" if resp.correct else "[red]no[/red]"
        table.add_row(str(i), item.id, item.strand, item.format.value, str(int(item.difficulty)), mark, f"{theta:.2f}")
    console.print(table)

    print(f"\n{BOLD}{CYAN}SESSION FINISHED{RESET} ({final.termination_reason})")
    print(f"True θ = {true_theta:.2f}  Estimated θ = {result.final_theta:.2f} ± {result.final_standard_error:.2f}")
    print(f"Percentile: {result.percentile}  Level: {result.performance_level}")
    print(f"Strand scores: {dict(result.strand_scores)}")
    print(f"{GREEN}Mastered:{RESET} {', '.join(result.mastered_standards) or '-'}")
    print(f"{RED}Gaps:{RESET} {', '.join(result.gap_standards) or '-'}")


def batch_simulation(settings: EngineSettings, subject: str) -> None:
    n = _ask_int("Number of simulated students (Enter = 200): ", 200)
    pool_size = _ask_int("Pool size (Enter = 120): ", 120)

    summary = run_simulation(
        n_examinees=n,
        pool_size=pool_size,
        subject=subject,
        seed=settings.random_seed,
        criteria=settings.termination_criteria(),
    )

    table = Table(title=f"CAT simulation: {subject}")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Students", str(summary.n_examinees))
    table.add_row("Bias (θ̂ − θ)", f"{summary.bias:+.3f}")
    table.add_row("RMSE", f"{summary.rmse:.3f}")
    table.add_row("Mean test length", f"{summary.mean_length:.1f}")
    table.add_row("Mean final SE", f"{summary.mean_standard_error:.3f}")
    table.add_row("Max item exposure rate", f"{summary.max_exposure_rate:.2%}")
    for reason, count in sorted(summary.stop_reasons.items(), key=lambda kv: -kv[1]):
        table.add_row(f"Stopped: {reason}", str(count))
    console.print(table)


def main():
    load_dotenv(dotenv_path=os.path.join(BASE_DIR, ".env"))
    try:
        settings = EngineSettings.from_env()
    except ConfigurationError as e:
        print(f"{RED}Bad configuration: {e}{RESET}")
        sys.exit(1)

    logging.basicConfig(level=settings.log_level, format="[%(asctime)s] %(levelname)s - %(message)s")

    print(f"\n{BOLD}{CYAN}Screener CAT simulation{RESET}\n")
    subject = choose_subject()
    print(f"\n{MAGENTA}Mode:{RESET}\n  {CYAN}1.{RESET} Trace one session\n  {CYAN}2.{RESET} Batch simulation")
    mode = input("\nPick a mode (Enter = 1): ").strip()

    if mode == "2":
        batch_simulation(settings, subject)
    else:
        trace_single_session(settings, subject)


if __name__ == "__main__":
    main()
