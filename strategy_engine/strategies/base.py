"""
Strategy contract, registry and the shared heuristic fallback.

A strategy turns (request context, live resources, model catalog,
performance ledger) into a RoutingDecision. Strategies form a closed set
keyed by StrategyKind and are dispatched by name through the registry.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from enum import Enum
from typing import Any, Protocol, TypeVar

from ..catalog import ModelCatalog
from ..learning import ParameterRecommendation, ParameterTuner, ThemeDetection, ThemeDetector
from ..ledger import PerformanceLedger
from ..types import ComplexityBand, RequestContext, ResourceState, RoutingDecision

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Confidence multiplier applied when the registry falls back to heuristics
FALLBACK_CONFIDENCE_FACTOR = 0.7
HEURISTIC_CONFIDENCE = 0.75


class StrategyKind(str, Enum):
    """The closed set of strategy variants."""

    SPEED = "speed"
    COST = "cost"
    QUALITY = "quality"
    ADAPTIVE = "adaptive"
    WORKFLOW = "workflow"


class Strategy(Protocol):
    """A routing strategy. Higher priority is preferred by ``select``."""

    name: str
    kind: StrategyKind
    priority: int

    async def decide(
        self,
        context: RequestContext,
        resources: ResourceState,
        catalog: ModelCatalog,
        ledger: PerformanceLedger | None,
    ) -> RoutingDecision: ...


# =============================================================================
# Helpers shared by the strategies
# =============================================================================


async def bounded(awaitable: Any, timeout_s: float | None) -> Any:
    """Await with an optional timeout."""
    return await asyncio.wait_for(awaitable, timeout_s)


async def in_thread(func: Callable[..., T], *args: Any, timeout_s: float | None = None) -> T:
    """Run a blocking call (ledger lookups) off the event loop, bounded by a timeout."""
    return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout_s)


def describe_failure(error: BaseException) -> str:
    if isinstance(error, asyncio.TimeoutError):
        return "timed out"
    return f"{type(error).__name__}: {error}"


async def detect_theme(
    detector: ThemeDetector | None,
    text: str,
    timeout_s: float | None,
    degraded: list[str],
) -> ThemeDetection | None:
    """Consult the theme detector; on failure note it in ``degraded`` and return None."""
    if detector is None:
        return None
    try:
        return await bounded(detector.detect_theme(text), timeout_s)
    except Exception as e:
        logger.warning("Theme detection unavailable: %s", describe_failure(e))
        degraded.append(f"theme detector {describe_failure(e)}")
        return None


async def recommend_parameters(
    tuner: ParameterTuner | None,
    theme: str,
    complexity: int,
    timeout_s: float | None,
    degraded: list[str],
) -> ParameterRecommendation | None:
    """Consult the parameter tuner; on failure note it in ``degraded`` and return None."""
    if tuner is None:
        return None
    try:
        return await bounded(tuner.recommend(theme, complexity), timeout_s)
    except Exception as e:
        logger.warning("Parameter tuning unavailable: %s", describe_failure(e))
        degraded.append(f"parameter tuner {describe_failure(e)}")
        return None


def heuristic_decision(
    context: RequestContext,
    catalog: ModelCatalog,
    strategy_name: str,
    cause: str,
) -> RoutingDecision:
    """
    Complexity-banded decision used when a strategy cannot decide.

    Confidence is reduced to mark the decision as a fallback.
    """
    band = context.complexity_band
    if band == ComplexityBand.SIMPLE:
        model, temperature, max_tokens, tools = catalog.smallest(), 0.3, 4000, False
    elif band == ComplexityBand.MODERATE:
        model, temperature, max_tokens, tools = catalog.mid(), 0.4, 8000, True
    else:
        model, temperature, max_tokens, tools = catalog.largest(), 0.5, 12000, True

    return RoutingDecision(
        strategy_name=strategy_name,
        selected_model=model.name,
        temperature=temperature,
        max_tokens=max_tokens,
        reasoning=(
            f"Heuristic fallback ({cause}): {band.value} complexity "
            f"{context.complexity_score} -> {model.name}"
        ),
        confidence=HEURISTIC_CONFIDENCE * FALLBACK_CONFIDENCE_FACTOR,
        complexity_score=context.complexity_score,
        enable_tools=tools,
        max_tool_loops=3 if tools else 0,
        metadata={"fallback": True, "fallback_cause": cause},
    )


# =============================================================================
# Registry
# =============================================================================


class StrategyRegistry:
    """
    Name-keyed collection of strategies.

    Example:
        registry = StrategyRegistry([SpeedStrategy(), CostStrategy()])
        decision = await registry.decide("cost", context, resources, catalog, ledger)
    """

    def __init__(self, strategies: Iterable[Strategy] = ()):
        self._strategies: dict[str, Strategy] = {}
        for strategy in strategies:
            self.register(strategy)

    def register(self, strategy: Strategy) -> None:
        self._strategies[strategy.name] = strategy

    def get(self, name: str) -> Strategy | None:
        return self._strategies.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._strategies

    @property
    def names(self) -> list[str]:
        return [s.name for s in self.by_priority()]

    def by_priority(self) -> list[Strategy]:
        """Strategies, highest priority first."""
        return sorted(self._strategies.values(), key=lambda s: s.priority, reverse=True)

    def select(self, enabled: Iterable[str] | None = None) -> Strategy:
        """Highest-priority strategy among the enabled names (all when None)."""
        allowed = None if enabled is None else set(enabled)
        for strategy in self.by_priority():
            if allowed is None or strategy.name in allowed:
                return strategy
        raise LookupError(f"No registered strategy among {sorted(allowed or [])}")

    async def decide(
        self,
        name: str,
        context: RequestContext,
        resources: ResourceState,
        catalog: ModelCatalog,
        ledger: PerformanceLedger | None = None,
    ) -> RoutingDecision:
        """
        Run the named strategy.

        Never raises for well-typed input: an unknown name or a strategy
        failure yields the heuristic decision, with the cause in reasoning.
        """
        strategy = self._strategies.get(name)
        if strategy is None:
            logger.warning("Unknown strategy %r, using heuristic fallback", name)
            return heuristic_decision(context, catalog, name, f"unknown strategy {name!r}")

        try:
            decision = await strategy.decide(context, resources, catalog, ledger)
        except Exception as e:
            logger.warning("Strategy %s failed, using heuristic fallback: %s", name, e)
            return heuristic_decision(context, catalog, name, f"{name} failed: {describe_failure(e)}")

        logger.info(
            "Strategy %s selected %s (conf: %.2f, kind: %s)",
            name,
            decision.selected_model,
            decision.confidence,
            decision.kind.value,
        )
        return decision


__all__ = [
    "FALLBACK_CONFIDENCE_FACTOR",
    "Strategy",
    "StrategyKind",
    "StrategyRegistry",
    "bounded",
    "describe_failure",
    "detect_theme",
    "heuristic_decision",
    "in_thread",
    "recommend_parameters",
]
