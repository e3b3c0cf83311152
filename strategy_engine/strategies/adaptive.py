"""
Adaptive strategy: history- and theme-aware choice between the mid and
largest size classes.
"""

from __future__ import annotations

import asyncio
import logging

from ..catalog import ModelCatalog
from ..config import AdaptiveConfig
from ..learning import ParameterRecommendation, ParameterTuner, ThemeDetection, ThemeDetector
from ..ledger import PerformanceLedger
from ..types import (
    InteractionMode,
    ModelDescriptor,
    PerformanceSummary,
    RequestContext,
    ResourceState,
    RoutingDecision,
)
from .base import StrategyKind, describe_failure, detect_theme, in_thread, recommend_parameters

logger = logging.getLogger(__name__)

GENERAL_THEME = "general"

# Strategy-level quality is reported once there is enough history to mean something
MIN_DECISIONS_FOR_QUALITY = 10


class AdaptiveStrategy:
    """
    Scores the mid and largest models from their historical success.

    The smaller model's score is penalized as complexity rises and the
    larger model's score rewarded; the two adjustments are independent.
    A confident theme detection boosts the model it suggests. On a
    constrained machine the smaller model is always chosen.
    """

    name = "adaptive"
    kind = StrategyKind.ADAPTIVE
    priority = 110

    def __init__(
        self,
        config: AdaptiveConfig | None = None,
        theme_detector: ThemeDetector | None = None,
        parameter_tuner: ParameterTuner | None = None,
    ):
        self.config = config or AdaptiveConfig()
        self.theme_detector = theme_detector
        self.parameter_tuner = parameter_tuner

    def is_constrained(self, resources: ResourceState) -> bool:
        return (
            resources.available_ram_mb < self.config.constrained_ram_mb
            or resources.cpu_percent > self.config.constrained_cpu_percent
        )

    async def decide(
        self,
        context: RequestContext,
        resources: ResourceState,
        catalog: ModelCatalog,
        ledger: PerformanceLedger | None = None,
    ) -> RoutingDecision:
        cfg = self.config
        complexity = context.complexity_score
        small, large = catalog.mid(), catalog.largest()
        degraded: list[str] = []

        theme = await detect_theme(
            self.theme_detector, context.user_message, cfg.learning_timeout_s, degraded
        )
        params = await recommend_parameters(
            self.parameter_tuner,
            theme.theme if theme else GENERAL_THEME,
            complexity,
            cfg.learning_timeout_s,
            degraded,
        )
        strategy_perf, small_perf, large_perf = await self._history(
            ledger, small.name, large.name, degraded
        )

        constrained = self.is_constrained(resources)
        score_small = small_perf.success_rate * (
            1 - min(complexity / cfg.small_penalty_divisor, cfg.small_penalty_cap)
        )
        score_large = large_perf.success_rate * (
            1 + min(complexity / cfg.large_bonus_divisor, cfg.large_bonus_cap)
        )

        if theme is not None and theme.confidence > cfg.collaborator_confidence:
            boost = cfg.theme_boost * theme.confidence
            suggested = self._size_class_of(theme.suggested_model, catalog)
            if suggested == small.size_class.lower():
                score_small += boost
            elif suggested == large.size_class.lower():
                score_large += boost

        if constrained or score_small > score_large * cfg.preference_margin:
            model, alternative, confidence = small, large, score_small
            reasoning = (
                f"{small.size_class} proven ({score_small:.2f}) "
                f"vs {large.size_class} ({score_large:.2f})"
            )
        else:
            model, alternative, confidence = large, small, score_large
            reasoning = f"{large.size_class} better for complexity {complexity} ({score_large:.2f})"

        temperature, max_tokens, enable_tools = self._parameters(
            complexity, constrained, theme, params
        )

        reasoning += f" | constrained: {str(constrained).lower()}"
        if theme is not None:
            reasoning += f" | theme: {theme.theme}"
        if context.mode != InteractionMode.UNSET:
            reasoning += f" | mode: {context.mode.value}"
        if strategy_perf.total_decisions > MIN_DECISIONS_FOR_QUALITY:
            reasoning += f" | strategy quality: {strategy_perf.average_quality:.2f}"
        if degraded:
            reasoning += f" | degraded: {'; '.join(degraded)}"

        confidence = min(cfg.max_confidence, confidence)
        return RoutingDecision(
            strategy_name=self.name,
            selected_model=model.name,
            fallback_models=[alternative.name] if confidence < cfg.fallback_confidence else [],
            temperature=temperature,
            max_tokens=max_tokens,
            streaming=True,
            enable_tools=enable_tools,
            max_tool_loops=3,
            reasoning=reasoning,
            confidence=confidence,
            complexity_score=complexity,
            metadata={
                "historical_success_rate": small_perf.success_rate,
                "large_model_success_rate": large_perf.success_rate,
                "resource_constrained": constrained,
                "detected_theme": theme.theme if theme else None,
                "theme_confidence": theme.confidence if theme else None,
                "parameter_learning_confidence": params.confidence if params else None,
                "strategy_quality": strategy_perf.average_quality,
                "strategy_decisions": strategy_perf.total_decisions,
                "degraded": degraded,
            },
        )

    def _parameters(
        self,
        complexity: int,
        constrained: bool,
        theme: ThemeDetection | None,
        params: ParameterRecommendation | None,
    ) -> tuple[float, int, bool]:
        """Tuner when confident, else theme temperature, else complexity heuristics."""
        threshold = self.config.collaborator_confidence
        tuned = params is not None and params.confidence > threshold

        if tuned:
            temperature = params.temperature
        elif theme is not None and theme.confidence > threshold:
            temperature = theme.suggested_temperature
        else:
            temperature = 0.5 if complexity > 70 else 0.3

        if tuned:
            max_tokens = params.max_tokens
            enable_tools = params.enable_tools
        else:
            max_tokens = (
                self.config.constrained_max_tokens if constrained else self.config.default_max_tokens
            )
            enable_tools = complexity > 50
        return temperature, max_tokens, enable_tools

    async def _history(
        self,
        ledger: PerformanceLedger | None,
        small_model: str,
        large_model: str,
        degraded: list[str],
    ) -> tuple[PerformanceSummary, PerformanceSummary, PerformanceSummary]:
        defaults = (
            PerformanceSummary.default(self.name),
            PerformanceSummary.default(small_model),
            PerformanceSummary.default(large_model),
        )
        if ledger is None:
            degraded.append("no performance ledger")
            return defaults

        timeout = self.config.learning_timeout_s
        try:
            strategy_perf, small_perf, large_perf = await asyncio.gather(
                in_thread(ledger.strategy_performance, self.name, timeout_s=timeout),
                in_thread(ledger.model_performance, small_model, timeout_s=timeout),
                in_thread(ledger.model_performance, large_model, timeout_s=timeout),
            )
        except Exception as e:
            logger.warning("Performance ledger unavailable: %s", describe_failure(e))
            degraded.append(f"ledger {describe_failure(e)}")
            return defaults
        return strategy_perf, small_perf, large_perf

    @staticmethod
    def _size_class_of(model_name: str, catalog: ModelCatalog) -> str | None:
        model: ModelDescriptor | None = catalog.get(model_name)
        if model is not None:
            return model.size_class.lower()
        lowered = model_name.lower()
        for size_class in catalog.size_classes():
            if f":{size_class.lower()}" in lowered or f"-{size_class.lower()}" in lowered:
                return size_class.lower()
        return None


__all__ = ["AdaptiveStrategy"]
