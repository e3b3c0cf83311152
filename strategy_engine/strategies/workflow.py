"""
Workflow strategy: multi-model orchestration plans.

Chooses between a sequential refinement chain (draft -> refine -> review)
and a parallel ensemble vote, then shapes the plan to the machine.
"""

from __future__ import annotations

import logging

from ..catalog import ModelCatalog
from ..config import WorkflowConfig
from ..learning import ParameterRecommendation, ParameterTuner, ThemeDetection, ThemeDetector
from ..ledger import PerformanceLedger
from ..types import (
    ChainPlan,
    ChainRole,
    ChainStep,
    DecisionKind,
    EnsemblePlan,
    MergeStrategy,
    RequestContext,
    ResourceState,
    RoutingDecision,
    VotingStrategy,
)
from .base import StrategyKind, detect_theme, recommend_parameters

logger = logging.getLogger(__name__)

DRAFT_INSTRUCTION = "Create a working draft. Focus on core functionality, leave edge cases for later."
REFINE_INSTRUCTION = "Improve the draft. Add error handling, tighten the logic, cover common edge cases."
REVIEW_INSTRUCTION = (
    "Final review. Check for bugs, security issues and performance problems, "
    "and handle the remaining edge cases."
)

# Collaborator confidence above which learned parameters are trusted
COLLABORATOR_CONFIDENCE = 0.7


class WorkflowStrategy:
    """
    Chain or ensemble, chosen by theme, complexity and resources.

    ``mode`` may be set by the caller: "chain" is always honored,
    "ensemble" is honored unless RAM is critically low. The initial mode
    comes from the config; ``set_mode`` changes this instance only.
    """

    name = "workflow"
    kind = StrategyKind.WORKFLOW
    priority = 115

    def __init__(
        self,
        config: WorkflowConfig | None = None,
        theme_detector: ThemeDetector | None = None,
        parameter_tuner: ParameterTuner | None = None,
        learning_timeout_s: float | None = 2.0,
    ):
        self.config = config or WorkflowConfig()
        self.theme_detector = theme_detector
        self.parameter_tuner = parameter_tuner
        self.learning_timeout_s = learning_timeout_s
        self._mode = self.config.mode

    @property
    def mode(self) -> str:
        return self._mode

    def set_mode(self, mode: str) -> None:
        if mode not in ("auto", "chain", "ensemble"):
            raise ValueError(f"Unknown workflow mode: {mode}")
        self._mode = mode

    async def decide(
        self,
        context: RequestContext,
        resources: ResourceState,
        catalog: ModelCatalog,
        ledger: PerformanceLedger | None = None,
    ) -> RoutingDecision:
        complexity = context.complexity_score
        degraded: list[str] = []

        theme = await detect_theme(
            self.theme_detector, context.user_message, self.learning_timeout_s, degraded
        )
        theme_name = theme.theme if theme else ""
        params = await recommend_parameters(
            self.parameter_tuner,
            theme_name or "general",
            complexity,
            self.learning_timeout_s,
            degraded,
        )
        if params is not None and params.confidence <= COLLABORATOR_CONFIDENCE:
            params = None

        kind = self.determine_workflow_type(complexity, theme_name, resources)
        if kind == DecisionKind.ENSEMBLE:
            decision = self.build_ensemble(context, catalog, resources, theme, params)
        else:
            decision = self.build_chain(context, catalog, resources, theme, params)

        decision.metadata["degraded"] = degraded
        if degraded:
            decision.reasoning += f" | degraded: {'; '.join(degraded)}"
        logger.info("Selected %s workflow: %s", kind.value, decision.reasoning)
        return decision

    def determine_workflow_type(
        self, complexity: int, theme: str, resources: ResourceState
    ) -> DecisionKind:
        cfg = self.config
        ram = resources.available_ram_mb

        if self._mode == "chain":
            return DecisionKind.CHAIN
        if self._mode == "ensemble":
            if ram < cfg.critical_ram_mb:
                logger.warning(
                    "Ensemble requested with %.0fMB RAM (< %.0fMB), falling back to chain",
                    ram,
                    cfg.critical_ram_mb,
                )
                return DecisionKind.CHAIN
            return DecisionKind.ENSEMBLE

        use_ensemble = (
            any(t in theme for t in cfg.ensemble_themes) and ram >= cfg.ensemble_min_ram_mb
        )
        use_chain = any(t in theme for t in cfg.chain_themes) or complexity > 70

        if use_ensemble and not use_chain:
            return DecisionKind.ENSEMBLE
        if complexity > 80 and ram >= cfg.complex_chain_ram_mb:
            return DecisionKind.CHAIN
        if "security" in theme:
            return DecisionKind.ENSEMBLE if ram >= cfg.ensemble_min_ram_mb else DecisionKind.CHAIN
        return DecisionKind.CHAIN

    def is_chain_constrained(self, resources: ResourceState) -> bool:
        return (
            resources.available_ram_mb < self.config.chain_constrained_ram_mb
            or resources.cpu_percent > self.config.chain_constrained_cpu_percent
        )

    def build_chain(
        self,
        context: RequestContext,
        catalog: ModelCatalog,
        resources: ResourceState,
        theme: ThemeDetection | None,
        params: ParameterRecommendation | None,
    ) -> RoutingDecision:
        complexity = context.complexity_score
        constrained = self.is_chain_constrained(resources)

        steps = [
            ChainStep(
                model=catalog.smallest().name,
                role=ChainRole.DRAFT,
                max_tokens=2000,
                temperature=0.7,
                instruction=DRAFT_INSTRUCTION,
            )
        ]
        if complexity > 40 or not constrained:
            steps.append(
                ChainStep(
                    model=catalog.mid().name,
                    role=ChainRole.REFINE,
                    max_tokens=4000,
                    temperature=params.temperature if params else 0.4,
                    instruction=REFINE_INSTRUCTION,
                )
            )
        if complexity > 70 and not constrained:
            steps.append(
                ChainStep(
                    model=catalog.largest().name,
                    role=ChainRole.REVIEW,
                    max_tokens=6000,
                    temperature=0.3,
                    instruction=REVIEW_INSTRUCTION,
                )
            )

        theme_info = f" | theme: {theme.theme}" if theme else ""
        return RoutingDecision(
            strategy_name=self.name,
            selected_model=steps[0].model,
            temperature=params.temperature if params else 0.4,
            max_tokens=12000,
            streaming=False,
            enable_tools=params.enable_tools if params else complexity > 50,
            max_tool_loops=3,
            chain_plan=ChainPlan(steps=tuple(steps), merge_strategy=MergeStrategy.LAST),
            reasoning=f"Chain workflow: {len(steps)} steps (complexity: {complexity}{theme_info})",
            confidence=0.85,
            complexity_score=complexity,
            metadata={
                "workflow_type": DecisionKind.CHAIN.value,
                "step_count": len(steps),
                "detected_theme": theme.theme if theme else None,
                "theme_confidence": theme.confidence if theme else None,
                "parameter_learning_confidence": params.confidence if params else None,
            },
        )

    def build_ensemble(
        self,
        context: RequestContext,
        catalog: ModelCatalog,
        resources: ResourceState,
        theme: ThemeDetection | None,
        params: ParameterRecommendation | None,
    ) -> RoutingDecision:
        complexity = context.complexity_score
        cfg = self.config

        members = [(catalog.mid().name, 0.5)]
        if resources.available_ram_mb >= cfg.large_member_ram_mb:
            members.append((catalog.largest().name, 0.8))
        members.append((catalog.smallest().name, 0.3))

        weights: dict[str, float] = {}
        for model, weight in members:
            weights.setdefault(model, weight)
        models = tuple(weights)

        theme_name = theme.theme if theme else ""
        critical = any(t in theme_name for t in cfg.critical_themes)
        voting = VotingStrategy.CONSENSUS if critical else VotingStrategy.WEIGHTED
        threshold = 0.8 if critical else 0.7

        theme_info = f" | theme: {theme_name}" if theme else ""
        return RoutingDecision(
            strategy_name=self.name,
            selected_model=models[0],
            temperature=params.temperature if params else 0.4,
            max_tokens=8000,
            streaming=False,
            enable_tools=False,
            max_tool_loops=0,
            ensemble_plan=EnsemblePlan(
                models=models,
                weights=weights,
                voting_strategy=voting,
                min_consensus_threshold=threshold,
            ),
            reasoning=(
                f"Ensemble workflow: {len(models)} models, {voting.value} voting "
                f"(complexity: {complexity}{theme_info})"
            ),
            confidence=0.9,
            complexity_score=complexity,
            metadata={
                "workflow_type": DecisionKind.ENSEMBLE.value,
                "model_count": len(models),
                "voting_strategy": voting.value,
                "detected_theme": theme.theme if theme else None,
                "theme_confidence": theme.confidence if theme else None,
                "parameter_learning_confidence": params.confidence if params else None,
            },
        )


__all__ = ["WorkflowStrategy"]
