"""
Routing strategies.

Speed, Cost and Quality are fixed profiles; Adaptive learns from the
performance ledger; Workflow plans chains and ensembles.
"""

from __future__ import annotations

from ..config import EngineConfig
from ..learning import ParameterTuner, ThemeDetector
from .adaptive import AdaptiveStrategy
from .base import Strategy, StrategyKind, StrategyRegistry, heuristic_decision
from .simple import CostStrategy, QualityStrategy, SpeedStrategy
from .workflow import WorkflowStrategy


def default_registry(
    config: EngineConfig | None = None,
    theme_detector: ThemeDetector | None = None,
    parameter_tuner: ParameterTuner | None = None,
) -> StrategyRegistry:
    """Registry holding all five strategies, wired to the given collaborators."""
    config = config or EngineConfig()
    return StrategyRegistry(
        [
            SpeedStrategy(),
            CostStrategy(),
            QualityStrategy(),
            AdaptiveStrategy(config.adaptive, theme_detector, parameter_tuner),
            WorkflowStrategy(
                config.workflow,
                theme_detector,
                parameter_tuner,
                learning_timeout_s=config.adaptive.learning_timeout_s,
            ),
        ]
    )


__all__ = [
    "AdaptiveStrategy",
    "CostStrategy",
    "QualityStrategy",
    "SpeedStrategy",
    "Strategy",
    "StrategyKind",
    "StrategyRegistry",
    "WorkflowStrategy",
    "default_registry",
    "heuristic_decision",
]
