# cat_engine/__init__.py

"""
Adaptive testing engine for the universal screener.

Includes:
- 3PL IRT model: probability, Fisher information, item parameters from metadata
- Scoring of candidates by content coverage, exposure and format balance
- Adaptive item selection (weighted score, stochastic top-k)
- θ estimation (EAP or MAP) and stopping rules
- Session lifecycle: create -> process responses -> finalize

Common exports:
    Item, Response, Session, SessionStatus
    prob_correct, fisher_info, item_params
    ContentBalancingConfig, SelectionConfig, TerminationCriteria
    select_next_item, select_initial_item, should_terminate
    AdaptiveSessionManager, ability_to_percentile
"""

# Schema models
from .schema import (
    DifficultyLevel,
    IRTParams,
    Item,
    QuestionFormat,
    Response,
    Session,
    SessionResult,
    SessionStatus,
    StandardPerformance,
)

# Errors
from .errors import (
    CATError,
    ConfigurationError,
    InvalidStateError,
)

# IRT computation
from .irt_engine import (
    prob_correct,
    fisher_info,
    item_params,
    item_information,
    difficulty_to_b,
)

# Candidate scoring
from .content_balancer import (
    StrandConfig,
    ContentBalancingConfig,
    content_score,
    make_default_content_config,
)
from .exposure_control import (
    ExposureCounter,
    InMemoryExposureCounter,
    exposure_score,
)
from .format_distributor import (
    DEFAULT_FORMAT_DISTRIBUTION,
    format_score,
)

# Adaptive selection
from .adaptive_selector import (
    SelectionStrategy,
    SelectionConfig,
    select_next_item,
    select_initial_item,
    adaptive_difficulty_range,
    under_covered_strands,
)

# Estimation & stopping
from .ability_estimator import (
    AbilityEstimate,
    AbilityEstimator,
    EstimationMethod,
)
from .stopping_rules import (
    TerminationCriteria,
    TerminationDecision,
    should_terminate,
)

# Session lifecycle
from .session_engine import (
    AdaptiveSessionManager,
    ability_to_percentile,
    ability_to_performance_level,
)
from .settings import EngineSettings


__all__ = [
    # Schema
    "DifficultyLevel",
    "IRTParams",
    "Item",
    "QuestionFormat",
    "Response",
    "Session",
    "SessionResult",
    "SessionStatus",
    "StandardPerformance",

    # Errors
    "CATError",
    "ConfigurationError",
    "InvalidStateError",

    # IRT
    "prob_correct",
    "fisher_info",
    "item_params",
    "item_information",
    "difficulty_to_b",

    # Scoring
    "StrandConfig",
    "ContentBalancingConfig",
    "content_score",
    "make_default_content_config",
    "ExposureCounter",
    "InMemoryExposureCounter",
    "exposure_score",
    "DEFAULT_FORMAT_DISTRIBUTION",
    "format_score",

    # Adaptive selector
    "SelectionStrategy",
    "SelectionConfig",
    "select_next_item",
    "select_initial_item",
    "adaptive_difficulty_range",
    "under_covered_strands",

    # Estimation & stopping
    "AbilityEstimate",
    "AbilityEstimator",
    "EstimationMethod",
    "TerminationCriteria",
    "TerminationDecision",
    "should_terminate",

    # Session
    "AdaptiveSessionManager",
    "ability_to_percentile",
    "ability_to_performance_level",
    "EngineSettings",
]
