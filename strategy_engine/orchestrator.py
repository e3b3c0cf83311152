"""
Engine entry point.

The Orchestrator wires the pipeline together:

    analyze -> route (strategy -> constraints -> ledger) -> execute -> feedback

All collaborators are injected; ``Orchestrator.from_config`` builds the
default set from an EngineConfig.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from collections import OrderedDict, deque
from collections.abc import AsyncIterator, Iterable
from dataclasses import dataclass
from typing import Any

from .analyzer import ContextAnalyzer
from .backend import InferenceBackend, create_backend
from .catalog import ModelCatalog
from .complexity import HeuristicComplexityScorer
from .config import EngineConfig
from .constraints import ConstraintEnforcer
from .learning import HistoricalParameterTuner, KeywordThemeDetector, ParameterTuner, ThemeDetector
from .ledger import BackgroundRecorder, PerformanceLedger
from .prompts import mode_system_prompt
from .resources import ResourceMonitor, ResourceSampler
from .strategies import StrategyRegistry, default_registry
from .types import (
    MAX_RECENT_DECISIONS,
    BackendError,
    ConversationMessage,
    DecisionKind,
    ExecutionError,
    ExecutionResult,
    InteractionMode,
    LedgerError,
    Outcome,
    RecentDecision,
    RequestContext,
    ResourceState,
    RoutingDecision,
    UserFeedback,
)
from .workflows import ChainExecutor, EnsembleExecutor

logger = logging.getLogger(__name__)

# Decisions kept in memory so feedback can be forwarded to the learning collaborators
MAX_TRACKED_DECISIONS = 256


@dataclass
class FeedbackReceipt:
    """Whether an outcome was recorded, and why not when it wasn't."""

    recorded: bool
    reason: str | None = None


@dataclass
class HandledRequest:
    """Everything produced while handling one request end to end."""

    context: RequestContext
    decision: RoutingDecision
    result: ExecutionResult


class Orchestrator:
    """
    Routes requests to models and executes the resulting plans.

    Example:
        async with Orchestrator.from_config(EngineConfig.load()) as engine:
            handled = await engine.handle("Review this async code ...")
            print(handled.result.text)
            await engine.report_feedback(handled.decision.id, UserFeedback.POSITIVE)
    """

    def __init__(
        self,
        backend: InferenceBackend,
        *,
        config: EngineConfig | None = None,
        catalog: ModelCatalog | None = None,
        ledger: PerformanceLedger | None = None,
        registry: StrategyRegistry | None = None,
        analyzer: ContextAnalyzer | None = None,
        monitor: ResourceSampler | None = None,
        enforcer: ConstraintEnforcer | None = None,
        theme_detector: ThemeDetector | None = None,
        parameter_tuner: ParameterTuner | None = None,
        recorder: BackgroundRecorder | None = None,
    ):
        self.config = config or EngineConfig()
        self.backend = backend
        self.catalog = catalog or ModelCatalog()
        self.ledger = ledger
        self.theme_detector = theme_detector
        self.parameter_tuner = parameter_tuner
        self.registry = registry or default_registry(self.config, theme_detector, parameter_tuner)
        self.analyzer = analyzer or ContextAnalyzer(HeuristicComplexityScorer(self.config.complexity))
        self.monitor = monitor or ResourceMonitor()
        self.enforcer = enforcer or ConstraintEnforcer(self.catalog, self.config.resources)
        self.recorder = recorder or BackgroundRecorder(
            max_attempts=self.config.ledger.recorder_max_attempts,
            retry_delay_s=self.config.ledger.recorder_retry_delay_s,
        )
        self.chain_executor = ChainExecutor(backend, self.config.chain)
        self.ensemble_executor = EnsembleExecutor(backend, self.config.ensemble)

        self._decisions: OrderedDict[str, RoutingDecision] = OrderedDict()
        self._recent: deque[RecentDecision] = deque(maxlen=MAX_RECENT_DECISIONS)

    @classmethod
    def from_config(cls, config: EngineConfig | None = None) -> Orchestrator:
        """Default wiring: configured backend and ledger, bundled learning collaborators."""
        config = config or EngineConfig.load()
        catalog = ModelCatalog()
        return cls(
            create_backend(config.backend),
            config=config,
            catalog=catalog,
            ledger=PerformanceLedger(config.ledger.db_path),
            theme_detector=KeywordThemeDetector(catalog),
            parameter_tuner=HistoricalParameterTuner(),
        )

    async def __aenter__(self) -> Orchestrator:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Deliver pending background writes and release the backend."""
        await self.recorder.stop()
        aclose = getattr(self.backend, "aclose", None)
        if aclose is not None:
            await aclose()

    # =========================================================================
    # Analyze
    # =========================================================================

    def analyze(
        self,
        text: str,
        file_path_hint: str | None = None,
        *,
        history: Iterable[ConversationMessage] = (),
        mode_override: InteractionMode | None = None,
        model_override: str | None = None,
    ) -> RequestContext:
        return self.analyzer.analyze(
            text,
            file_path_hint,
            history=history,
            mode_override=mode_override,
            model_override=model_override,
            recent_decisions=tuple(self._recent),
        )

    # =========================================================================
    # Route
    # =========================================================================

    async def route(
        self,
        context: RequestContext,
        strategy: str | None = None,
        resources: ResourceState | None = None,
    ) -> RoutingDecision:
        """
        Produce a constrained, recorded decision.

        Always returns a decision. A ledger write failure is logged and
        listed in ``metadata["warnings"]`` rather than raised.
        """
        resources = resources or self.monitor.sample()
        name = strategy or self.config.default_strategy

        decision = await self.registry.decide(name, context, resources, self.catalog, self.ledger)
        decision = self.enforcer.apply(decision, resources)

        if context.model_override:
            decision = dataclasses.replace(
                decision,
                selected_model=context.model_override,
                reasoning=f"{decision.reasoning} | model override: {context.model_override}",
            )

        self.enforcer.is_valid_decision(decision, resources)
        await self._record_decision(decision)
        self._remember(decision)
        return decision

    async def _record_decision(self, decision: RoutingDecision) -> None:
        if self.ledger is None:
            return
        try:
            await asyncio.to_thread(self.ledger.record_decision, decision)
        except LedgerError as e:
            logger.warning("Could not record decision %s: %s", decision.id, e)
            decision.metadata.setdefault("warnings", []).append(f"decision not recorded: {e}")

    def _remember(self, decision: RoutingDecision) -> None:
        self._decisions[decision.id] = decision
        while len(self._decisions) > MAX_TRACKED_DECISIONS:
            self._decisions.popitem(last=False)
        self._recent.append(
            RecentDecision(
                decision_id=decision.id,
                strategy=decision.strategy_name,
                model=decision.selected_model,
                complexity_score=decision.complexity_score,
                timestamp=decision.timestamp,
            )
        )

    def get_decision(self, decision_id: str) -> RoutingDecision | None:
        return self._decisions.get(decision_id)

    # =========================================================================
    # Execute
    # =========================================================================

    async def execute(
        self,
        decision: RoutingDecision,
        context: RequestContext,
        timeout_s: float | None = None,
    ) -> ExecutionResult:
        """
        Run a decision.

        Raises:
            ExecutionError: single-call decision failed on every candidate model
            EnsembleFailedError: every ensemble member failed
        """
        messages = context.chat_messages(self.config.backend.history_messages)

        chain_plan = decision.chain_plan
        if chain_plan is not None:
            chain = await self.chain_executor.execute(
                chain_plan,
                messages,
                step_timeout_s=timeout_s,
            )
            return ExecutionResult(
                decision_id=decision.id,
                kind=DecisionKind.CHAIN,
                text=chain.final_response,
                model_used=chain.steps[-1].model,
                tokens_used=chain.total_tokens,
                latency_ms=chain.execution_time_ms,
                chain=chain,
                attempts=[step.model for step in chain.steps],
            )

        ensemble_plan = decision.ensemble_plan
        if ensemble_plan is not None:
            ensemble = await self.ensemble_executor.execute(
                ensemble_plan,
                messages,
                context.user_message,
                member_timeout_s=timeout_s,
            )
            return ExecutionResult(
                decision_id=decision.id,
                kind=DecisionKind.ENSEMBLE,
                text=ensemble.consensus,
                model_used=decision.selected_model,
                tokens_used=sum(vote.tokens_used for vote in ensemble.votes),
                latency_ms=ensemble.execution_time_ms,
                ensemble=ensemble,
                attempts=list(ensemble_plan.models),
            )

        return await self._execute_single(decision, context, timeout_s)

    def _single_messages(self, context: RequestContext) -> list[dict[str, str]]:
        return [
            {"role": "system", "content": mode_system_prompt(context.mode)},
            *context.chat_messages(self.config.backend.history_messages),
        ]

    async def _execute_single(
        self,
        decision: RoutingDecision,
        context: RequestContext,
        timeout_s: float | None,
    ) -> ExecutionResult:
        messages = self._single_messages(context)
        attempts: list[str] = []
        errors: list[str] = []
        start = time.perf_counter()

        for model in decision.all_models:
            attempts.append(model)
            try:
                completion = await asyncio.wait_for(
                    self.backend.chat(
                        model,
                        messages,
                        temperature=decision.temperature,
                        max_tokens=decision.max_tokens,
                    ),
                    timeout_s,
                )
            except (BackendError, asyncio.TimeoutError) as e:
                message = "timed out" if isinstance(e, asyncio.TimeoutError) else str(e)
                logger.warning("Model %s failed for %s: %s", model, decision.id, message)
                errors.append(f"{model}: {message}")
                continue

            return ExecutionResult(
                decision_id=decision.id,
                kind=DecisionKind.SINGLE,
                text=completion.content,
                model_used=model,
                tokens_used=completion.tokens_used,
                latency_ms=(time.perf_counter() - start) * 1000,
                attempts=attempts,
            )

        raise ExecutionError(
            f"Execution failed for {decision.id} on all models ({'; '.join(errors)})",
            retryable=True,
            attempts=attempts,
        )

    async def stream(self, decision: RoutingDecision, context: RequestContext) -> AsyncIterator[str]:
        """
        Stream a single-call decision.

        Falls back to the next model only if a model fails before producing
        any output; a failure mid-stream is raised.
        """
        if decision.kind != DecisionKind.SINGLE:
            raise ValueError(f"Only single-call decisions can be streamed, got {decision.kind.value}")

        messages = self._single_messages(context)
        attempts: list[str] = []
        for model in decision.all_models:
            attempts.append(model)
            produced = False
            try:
                async for chunk in self.backend.stream(
                    model,
                    messages,
                    temperature=decision.temperature,
                    max_tokens=decision.max_tokens,
                ):
                    produced = True
                    yield chunk
                return
            except BackendError as e:
                if produced:
                    raise
                logger.warning("Model %s failed to stream for %s: %s", model, decision.id, e)

        raise ExecutionError(
            f"Streaming failed for {decision.id} on all models", retryable=True, attempts=attempts
        )

    # =========================================================================
    # Feedback
    # =========================================================================

    async def report_feedback(
        self, decision_id: str, outcome: Outcome | UserFeedback | str
    ) -> FeedbackReceipt:
        """
        Record the outcome of a decision and feed it to the learning collaborators.

        Unknown or already-rated ids yield ``recorded=False``, never an error.
        """
        if not isinstance(outcome, Outcome):
            outcome = Outcome.from_feedback(outcome)

        if self.ledger is None:
            return FeedbackReceipt(recorded=False, reason="no performance ledger")

        try:
            recorded = await asyncio.to_thread(self.ledger.record_outcome, decision_id, outcome)
            if not recorded:
                existing = await asyncio.to_thread(self.ledger.get_record, decision_id)
        except LedgerError as e:
            logger.warning("Could not record outcome for %s: %s", decision_id, e)
            return FeedbackReceipt(recorded=False, reason=f"ledger error: {e}")

        if not recorded:
            reason = "outcome already recorded" if existing else "decision not found"
            return FeedbackReceipt(recorded=False, reason=reason)

        self._queue_learning(decision_id, outcome)
        return FeedbackReceipt(recorded=True)

    def _queue_learning(self, decision_id: str, outcome: Outcome) -> None:
        decision = self._decisions.get(decision_id)
        if decision is None:
            return
        theme = decision.metadata.get("detected_theme")
        if not theme:
            return

        record_feedback = getattr(self.theme_detector, "record_feedback", None)
        if record_feedback is not None:
            self.recorder.submit(
                record_feedback, theme, decision.selected_model, outcome.response_quality
            )

        record_experiment = getattr(self.parameter_tuner, "record_experiment", None)
        if record_experiment is not None:
            self.recorder.submit(
                record_experiment,
                theme,
                decision.complexity_score,
                decision.temperature,
                decision.max_tokens,
                decision.enable_tools,
                outcome.response_quality,
            )

    # =========================================================================
    # End to end
    # =========================================================================

    async def handle(
        self,
        text: str,
        file_path_hint: str | None = None,
        *,
        strategy: str | None = None,
        history: Iterable[ConversationMessage] = (),
        mode_override: InteractionMode | None = None,
        model_override: str | None = None,
        timeout_s: float | None = None,
    ) -> HandledRequest:
        """Analyze, route and execute one request."""
        context = self.analyze(
            text,
            file_path_hint,
            history=history,
            mode_override=mode_override,
            model_override=model_override,
        )
        decision = await self.route(context, strategy)
        result = await self.execute(decision, context, timeout_s)
        return HandledRequest(context=context, decision=decision, result=result)

    def stats(self) -> dict[str, Any]:
        """Ledger totals and per-strategy summaries."""
        if self.ledger is None:
            return {"total_decisions": 0, "strategies": {}}
        return {
            "total_decisions": self.ledger.count(),
            "strategies": {
                name: dataclasses.asdict(summary)
                for name, summary in self.ledger.strategy_breakdown().items()
            },
        }


__all__ = [
    "FeedbackReceipt",
    "HandledRequest",
    "Orchestrator",
]
