"""
Fixed-profile strategies: Speed, Cost and Quality.

These ignore history and resources; the constraint enforcer adjusts
their decisions to the machine afterwards.
"""

from __future__ import annotations

from ..catalog import ModelCatalog
from ..ledger import PerformanceLedger
from ..types import RequestContext, ResourceState, RoutingDecision
from .base import StrategyKind


class SpeedStrategy:
    """Always the smallest model with a small budget."""

    name = "speed"
    kind = StrategyKind.SPEED
    priority = 90

    async def decide(
        self,
        context: RequestContext,
        resources: ResourceState,
        catalog: ModelCatalog,
        ledger: PerformanceLedger | None = None,
    ) -> RoutingDecision:
        model = catalog.smallest()
        return RoutingDecision(
            strategy_name=self.name,
            selected_model=model.name,
            temperature=0.2,
            max_tokens=3000,
            reasoning=f"Speed-first: fastest model ({model.name}) with a small token budget",
            confidence=0.9,
            complexity_score=context.complexity_score,
            enable_tools=False,
            max_tool_loops=1,
        )


class CostStrategy:
    """
    Small or mid model by complexity, never the largest.

    Below 40 the smallest size class is enough; above that the mid class
    is used all the way up.
    """

    name = "cost"
    kind = StrategyKind.COST
    priority = 70

    small_below = 40

    async def decide(
        self,
        context: RequestContext,
        resources: ResourceState,
        catalog: ModelCatalog,
        ledger: PerformanceLedger | None = None,
    ) -> RoutingDecision:
        complexity = context.complexity_score
        model = catalog.smallest() if complexity < self.small_below else catalog.mid()
        return RoutingDecision(
            strategy_name=self.name,
            selected_model=model.name,
            temperature=0.3,
            max_tokens=6000,
            reasoning=f"Cost-optimized: {model.name} for complexity {complexity}",
            confidence=0.85,
            complexity_score=complexity,
            enable_tools=False,
            max_tool_loops=2,
        )


class QualityStrategy:
    """Always the largest model with full capabilities."""

    name = "quality"
    kind = StrategyKind.QUALITY
    priority = 80

    async def decide(
        self,
        context: RequestContext,
        resources: ResourceState,
        catalog: ModelCatalog,
        ledger: PerformanceLedger | None = None,
    ) -> RoutingDecision:
        model = catalog.largest()
        return RoutingDecision(
            strategy_name=self.name,
            selected_model=model.name,
            temperature=0.6,
            max_tokens=20000,
            reasoning=f"Quality-first: best model ({model.name}) with tools enabled",
            confidence=0.95,
            complexity_score=context.complexity_score,
            enable_tools=True,
            max_tool_loops=5,
        )


__all__ = ["CostStrategy", "QualityStrategy", "SpeedStrategy"]
