# cat_engine/settings.py

"""
Engine settings from environment variables (optionally a .env file).

    CAT_MAX_QUESTIONS       default 25
    CAT_MIN_QUESTIONS       default 15
    CAT_TARGET_SE           default 0.3
    CAT_MAX_TIME_MINUTES    default 25
    CAT_STARTING_THETA      default 0.0
    CAT_ESTIMATION_METHOD   eap | map, default eap
    CAT_RANDOM_SEED         unset = nondeterministic selection
    CAT_LOG_LEVEL           default INFO
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Callable, Mapping, Optional, TypeVar

from dotenv import load_dotenv

from .ability_estimator import EstimationMethod
from .errors import ConfigurationError
from .stopping_rules import (
    MAX_QUESTIONS,
    MAX_TIME_MINUTES,
    MIN_QUESTIONS,
    TARGET_STANDARD_ERROR,
    TerminationCriteria,
)

T = TypeVar("T")


def _read(env: Mapping[str, str], name: str, cast: Callable[[str], T], default: T) -> T:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw.strip())
    except ValueError as e:
        raise ConfigurationError(f"Invalid value for {name}: {raw!r}", field=name) from e


@dataclass(frozen=True)
class EngineSettings:
    max_questions: int = MAX_QUESTIONS
    min_questions: int = MIN_QUESTIONS
    target_standard_error: float = TARGET_STANDARD_ERROR
    max_time_minutes: float = MAX_TIME_MINUTES
    starting_theta: float = 0.0
    estimation_method: EstimationMethod = EstimationMethod.EAP
    random_seed: Optional[int] = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None, dotenv_path: Optional[str] = None) -> "EngineSettings":
        """
        Read settings from `env` (os.environ when omitted). When reading
        os.environ, a .env file is loaded first without overriding variables
        already set.
        """
        if env is None:
            load_dotenv(dotenv_path=dotenv_path)
            env = os.environ

        level = _read(env, "CAT_LOG_LEVEL", str, "INFO").upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ConfigurationError(f"Unknown log level {level!r}", field="CAT_LOG_LEVEL")

        settings = cls(
            max_questions=_read(env, "CAT_MAX_QUESTIONS", int, MAX_QUESTIONS),
            min_questions=_read(env, "CAT_MIN_QUESTIONS", int, MIN_QUESTIONS),
            target_standard_error=_read(env, "CAT_TARGET_SE", float, TARGET_STANDARD_ERROR),
            max_time_minutes=_read(env, "CAT_MAX_TIME_MINUTES", float, MAX_TIME_MINUTES),
            starting_theta=_read(env, "CAT_STARTING_THETA", float, 0.0),
            estimation_method=_read(env, "CAT_ESTIMATION_METHOD", lambda v: EstimationMethod(v.lower()), EstimationMethod.EAP),
            random_seed=_read(env, "CAT_RANDOM_SEED", int, None),
            log_level=level,
        )
        settings.termination_criteria()
        return settings

    def termination_criteria(self) -> TerminationCriteria:
        return TerminationCriteria(
            max_questions=self.max_questions,
            min_questions=self.min_questions,
            target_standard_error=self.target_standard_error,
            max_time_minutes=self.max_time_minutes,
        ).validate()
