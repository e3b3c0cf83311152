"""
Property-based tests for complexity scoring, routing and constraint enforcement.
"""

import asyncio

import pytest
from hypothesis import given, settings, assume
from hypothesis import strategies as st

from strategy_engine.catalog import ModelCatalog
from strategy_engine.complexity import HeuristicComplexityScorer
from strategy_engine.constraints import ConstraintEnforcer
from strategy_engine.strategies import CostStrategy, WorkflowStrategy, default_registry
from strategy_engine.types import (
    ChainPlan,
    ChainRole,
    ChainStep,
    DecisionKind,
    EnsemblePlan,
    ModelVote,
    RequestContext,
    ResourceState,
    RiskLevel,
    RoutingDecision,
    Verdict,
)
from strategy_engine.workflows import weighted_consensus

CATALOG = ModelCatalog()

complexities = st.integers(min_value=0, max_value=100)

resource_states = st.builds(
    ResourceState,
    available_ram_mb=st.floats(min_value=0, max_value=128000, allow_nan=False),
    gpu_available=st.booleans(),
    gpu_layers=st.integers(min_value=0, max_value=80),
    cpu_threads=st.integers(min_value=1, max_value=64),
    cpu_percent=st.floats(min_value=0, max_value=100, allow_nan=False),
    temperature_c=st.none() | st.floats(min_value=20, max_value=110, allow_nan=False),
    on_battery=st.booleans(),
    battery_percent=st.none() | st.floats(min_value=0, max_value=100, allow_nan=False),
)

decisions = st.builds(
    RoutingDecision,
    strategy_name=st.sampled_from(["speed", "cost", "quality", "adaptive"]),
    selected_model=st.sampled_from(CATALOG.names),
    temperature=st.floats(min_value=0, max_value=1, allow_nan=False),
    max_tokens=st.integers(min_value=1, max_value=32000),
    reasoning=st.text(max_size=40),
    confidence=st.floats(min_value=0, max_value=1, allow_nan=False),
    complexity_score=complexities,
    streaming=st.booleans(),
)


def run(coro):
    return asyncio.run(coro)


class TestComplexityProperties:
    """Properties of the heuristic complexity scorer."""

    @given(st.text(max_size=5000))
    @settings(max_examples=100)
    def test_score_in_range(self, text: str):
        """Every input scores within [0, 100]."""
        assessment = HeuristicComplexityScorer().score(text)
        assert 0 <= assessment.score <= 100

    @given(st.text(max_size=2000))
    @settings(max_examples=50)
    def test_score_deterministic(self, text: str):
        scorer = HeuristicComplexityScorer()
        assert scorer.score(text).score == scorer.score(text).score

    @given(st.text(max_size=500), st.integers(min_value=1, max_value=5))
    @settings(max_examples=50)
    def test_extra_code_blocks_never_lower_score(self, text: str, blocks: int):
        """Appending fenced code only adds signal."""
        assume("```" not in text)
        code = "\n```python\nif x:\n    return y\n```" * blocks
        scorer = HeuristicComplexityScorer()
        assert scorer.score(text + code).score >= scorer.score(text).score


class TestCostStrategyProperties:
    """Cost routing never escalates to the largest model."""

    @given(complexities, resource_states)
    @settings(max_examples=100, deadline=None)
    def test_never_largest(self, complexity: int, resources: ResourceState):
        context = RequestContext(user_message="x", complexity_score=complexity)
        decision = run(CostStrategy().decide(context, resources, CATALOG))
        assert decision.selected_model != CATALOG.largest().name

    @given(complexities, complexities)
    @settings(max_examples=100, deadline=None)
    def test_monotone_in_complexity(self, a: int, b: int):
        """A more complex request never gets a smaller model."""
        low, high = sorted((a, b))
        resources = ResourceState(16000, True, 35, 8, 10.0)

        def size(complexity):
            context = RequestContext(user_message="x", complexity_score=complexity)
            decision = run(CostStrategy().decide(context, resources, CATALOG))
            return CATALOG.get(decision.selected_model).size_billions

        assert size(low) <= size(high)


class TestDecisionProperties:
    """Invariants of RoutingDecision."""

    @given(st.floats(allow_nan=False, allow_infinity=False))
    @settings(max_examples=100)
    def test_confidence_clamped(self, confidence: float):
        decision = RoutingDecision("speed", "m", 0.2, 100, "", confidence, 10)
        assert 0.0 <= decision.confidence <= 1.0

    @given(st.booleans(), st.booleans())
    @settings(max_examples=20)
    def test_plans_are_exclusive(self, with_chain: bool, with_ensemble: bool):
        """A decision is single, chain or ensemble, never both plans."""
        chain = ChainPlan(steps=(ChainStep("m", ChainRole.DRAFT, 100, 0.5),)) if with_chain else None
        ensemble = EnsemblePlan(models=("m",)) if with_ensemble else None

        if with_chain and with_ensemble:
            with pytest.raises(ValueError):
                RoutingDecision("w", "m", 0.2, 100, "", 0.5, 10, chain_plan=chain, ensemble_plan=ensemble)
            return

        decision = RoutingDecision("w", "m", 0.2, 100, "", 0.5, 10, chain_plan=chain, ensemble_plan=ensemble)
        expected = (
            DecisionKind.CHAIN if with_chain
            else DecisionKind.ENSEMBLE if with_ensemble
            else DecisionKind.SINGLE
        )
        assert decision.kind == expected


class TestRegistryProperties:
    """The registry always produces a usable decision."""

    @given(
        st.sampled_from(["speed", "cost", "quality", "adaptive", "workflow"]) | st.text(max_size=12),
        complexities,
        resource_states,
    )
    @settings(max_examples=50, deadline=None)
    def test_decide_never_raises(self, name: str, complexity: int, resources: ResourceState):
        registry = default_registry()
        context = RequestContext(user_message="Fix the login bug", complexity_score=complexity)
        decision = run(registry.decide(name, context, resources, CATALOG))
        assert 0.0 <= decision.confidence <= 1.0
        assert decision.max_tokens > 0
        assert decision.complexity_score == complexity


class TestWorkflowProperties:
    """Shape of workflow plans."""

    @given(complexities, resource_states)
    @settings(max_examples=50, deadline=None)
    def test_chain_shape(self, complexity: int, resources: ResourceState):
        """Chains start with a draft on the smallest model and have one to three steps."""
        strategy = WorkflowStrategy()
        strategy.set_mode("chain")
        context = RequestContext(user_message="Write a parser", complexity_score=complexity)
        decision = run(strategy.decide(context, resources, CATALOG))

        steps = decision.chain_plan.steps
        assert decision.ensemble_plan is None
        assert 1 <= len(steps) <= 3
        assert steps[0].role == ChainRole.DRAFT
        assert steps[0].model == CATALOG.smallest().name
        assert decision.metadata["step_count"] == len(steps)


class TestConstraintProperties:
    """Properties of the constraint enforcer."""

    @given(decisions, resource_states)
    @settings(max_examples=100)
    def test_idempotent(self, decision: RoutingDecision, resources: ResourceState):
        """Applying twice with the same resources changes nothing further."""
        enforcer = ConstraintEnforcer(CATALOG)
        once = enforcer.apply(decision, resources)
        twice = enforcer.apply(once, resources)
        assert twice.selected_model == once.selected_model
        assert twice.max_tokens == once.max_tokens
        assert twice.temperature == once.temperature
        assert twice.streaming == once.streaming
        assert twice.reasoning == once.reasoning

    @given(decisions, resource_states)
    @settings(max_examples=100)
    def test_result_is_well_formed(self, decision: RoutingDecision, resources: ResourceState):
        """Budgets stay positive and every applied rule is named in the reasoning."""
        constrained = ConstraintEnforcer(CATALOG).apply(decision, resources)
        assert constrained.max_tokens >= 1
        assert constrained.selected_model in CATALOG.names
        for clause in constrained.metadata["constraints_applied"]:
            assert clause in constrained.reasoning

    @given(decisions, resource_states)
    @settings(max_examples=50)
    def test_input_not_mutated(self, decision: RoutingDecision, resources: ResourceState):
        before = (decision.selected_model, decision.max_tokens, decision.reasoning)
        ConstraintEnforcer(CATALOG).apply(decision, resources)
        assert (decision.selected_model, decision.max_tokens, decision.reasoning) == before


class TestConsensusProperties:
    """Weighted voting stays within bounds."""

    @given(
        st.lists(
            st.tuples(
                st.sampled_from(list(Verdict)),
                st.floats(min_value=0, max_value=1, allow_nan=False),
                st.floats(min_value=0, max_value=5, allow_nan=False),
            ),
            min_size=1,
            max_size=7,
        )
    )
    @settings(max_examples=100)
    def test_confidence_bounded(self, raw_votes):
        votes = [
            ModelVote(f"m{i}", verdict, confidence, "", RiskLevel.LOW, weight=weight)
            for i, (verdict, confidence, weight) in enumerate(raw_votes)
        ]
        winner, confidence, breakdown = weighted_consensus(votes)
        assert 0.0 <= confidence <= 1.0
        assert sum(tally.count for tally in breakdown.values()) == len(votes)
        assert breakdown[winner].score == max(tally.score for tally in breakdown.values())
