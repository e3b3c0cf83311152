"""
Unit tests for resource constraint enforcement.
"""

import dataclasses

import pytest

from strategy_engine.config import ResourceConfig
from strategy_engine.constraints import ConstraintEnforcer, recommended_config, suggest_constraints
from strategy_engine.types import RequestContext, ResourceState, RoutingDecision

from conftest import LARGE, MID, MID_Q4, SMALL


def quality_decision(**overrides):
    fields = dict(
        strategy_name="quality",
        selected_model=LARGE,
        temperature=0.6,
        max_tokens=20000,
        reasoning="Quality-first",
        confidence=0.95,
        complexity_score=60,
        enable_tools=True,
        max_tool_loops=5,
    )
    fields.update(overrides)
    return RoutingDecision(**fields)


@pytest.fixture
def enforcer(catalog):
    return ConstraintEnforcer(catalog)


def with_state(base, **changes):
    return dataclasses.replace(base, **changes)


class TestRules:
    """Tests for each constraint rule."""

    def test_no_constraints_on_roomy_machine(self, enforcer, roomy_resources):
        """A machine with headroom leaves the decision alone."""
        decision = enforcer.apply(quality_decision(), roomy_resources)
        assert decision.selected_model == LARGE
        assert decision.max_tokens == 20000
        assert decision.reasoning == "Quality-first"
        assert decision.metadata["constraints_applied"] == []

    def test_low_ram_downgrades_quality(self, enforcer, tight_resources):
        """Quality on 4000MB becomes the 3B model with 4000 tokens."""
        decision = enforcer.apply(quality_decision(), tight_resources)
        assert decision.selected_model == SMALL
        assert decision.max_tokens == 4000
        assert decision.reasoning == "Quality-first | constraints: RAM limited (4000MB)"
        assert decision.enable_tools is True

    def test_gpu_layer_limit(self, catalog, roomy_resources):
        """Too many GPU layers moves to the CPU-friendly model."""
        enforcer = ConstraintEnforcer(catalog, ResourceConfig(max_gpu_layers=20))
        decision = enforcer.apply(quality_decision(), roomy_resources)
        assert decision.selected_model == SMALL
        assert "GPU layers limited" in decision.reasoning

    def test_high_cpu(self, enforcer, roomy_resources):
        """Busy CPU shrinks the budget and cools the temperature."""
        decision = enforcer.apply(quality_decision(), with_state(roomy_resources, cpu_percent=92.0))
        assert decision.max_tokens == 14000
        assert decision.temperature == 0.2
        assert "High CPU (92%)" in decision.reasoning

    def test_thermal(self, enforcer, roomy_resources):
        """Hot machines stream with half the budget."""
        decision = enforcer.apply(
            quality_decision(streaming=False), with_state(roomy_resources, temperature_c=90.0)
        )
        assert decision.streaming is True
        assert decision.max_tokens == 10000
        assert "Thermal throttling" in decision.reasoning

    def test_thermal_unknown_temperature(self, enforcer, roomy_resources):
        """Without a temperature reading the thermal rule cannot fire."""
        decision = enforcer.apply(quality_decision(), with_state(roomy_resources, temperature_c=None))
        assert decision.max_tokens == 20000

    def test_low_battery(self, enforcer, roomy_resources):
        """Low battery forces the smallest model and a tiny budget."""
        state = with_state(roomy_resources, on_battery=True, battery_percent=10.0)
        decision = enforcer.apply(quality_decision(), state)
        assert decision.selected_model == SMALL
        assert decision.max_tokens == 2000
        assert "Battery saver mode" in decision.reasoning

    def test_battery_plugged_in(self, enforcer, roomy_resources):
        """Battery rules only apply when running on battery."""
        state = with_state(roomy_resources, on_battery=False, battery_percent=10.0)
        assert enforcer.apply(quality_decision(), state).selected_model == LARGE

    def test_response_time(self, catalog, roomy_resources):
        """A response-time budget caps tokens at half the milliseconds."""
        enforcer = ConstraintEnforcer(catalog, ResourceConfig(max_response_time_ms=3000))
        decision = enforcer.apply(quality_decision(), roomy_resources)
        assert decision.max_tokens == 1500
        assert "Response time limited (3000ms)" in decision.reasoning

    def test_response_time_not_lowering_adds_no_clause(self, catalog, roomy_resources):
        """A generous response-time budget is silent."""
        enforcer = ConstraintEnforcer(catalog, ResourceConfig(max_response_time_ms=100000))
        decision = enforcer.apply(quality_decision(), roomy_resources)
        assert decision.metadata["constraints_applied"] == []

    def test_rules_are_cumulative(self, enforcer, tight_resources):
        """Several rules can fire on one decision."""
        state = with_state(tight_resources, cpu_percent=95.0, temperature_c=90.0)
        decision = enforcer.apply(quality_decision(), state)
        assert decision.max_tokens == 1400  # 4000 * 0.7 * 0.5
        assert decision.metadata["constraints_applied"] == [
            "RAM limited (4000MB)",
            "High CPU (95%)",
            "Thermal throttling",
        ]

    def test_per_call_config(self, enforcer, roomy_resources):
        """A config passed to apply overrides the enforcer's."""
        decision = enforcer.apply(
            quality_decision(), roomy_resources, ResourceConfig(max_ram_mb=64000)
        )
        assert decision.selected_model == MID


class TestIdempotence:
    """Re-applying the enforcer does not compound."""

    def test_apply_twice(self, enforcer, tight_resources):
        state = with_state(tight_resources, cpu_percent=95.0)
        once = enforcer.apply(quality_decision(), state)
        twice = enforcer.apply(once, state)
        assert twice.max_tokens == once.max_tokens
        assert twice.reasoning == once.reasoning
        assert twice.temperature == once.temperature

    def test_reapply_with_more_resources_restores(self, enforcer, tight_resources, roomy_resources):
        """The strategy's original values are kept for later applications."""
        constrained = enforcer.apply(quality_decision(), tight_resources)
        relaxed = enforcer.apply(constrained, roomy_resources)
        assert relaxed.selected_model == LARGE
        assert relaxed.max_tokens == 20000


class TestHelpers:
    """Tests for RAM downgrades, validation and suggestions."""

    @pytest.mark.parametrize("ram,model", [(4000, SMALL), (8000, MID_Q4), (13000, MID)])
    def test_downgrade_for_ram(self, enforcer, ram, model):
        assert enforcer.downgrade_for_ram(ram) == model

    def test_validation_reports_critical_shortage(self, enforcer, tight_resources):
        """Far too little RAM for the model is reported but not blocked."""
        result = enforcer.is_valid_decision(quality_decision(), tight_resources)
        assert not result.valid
        assert "Critical RAM shortage" in result.violations[0]

    def test_validation_passes(self, enforcer, roomy_resources):
        assert enforcer.is_valid_decision(quality_decision(), roomy_resources).valid

    def test_recommended_config(self, roomy_resources):
        config = recommended_config(roomy_resources)
        assert config.max_ram_mb == pytest.approx(22400)
        assert config.max_gpu_layers == 35
        assert config.max_cpu_threads == 8
        assert config.max_response_time_ms == 60000

    def test_suggest_constraints_hint(self, roomy_resources):
        complex_context = RequestContext(user_message="x", complexity_score=90)
        simple_context = RequestContext(user_message="x", complexity_score=10)
        assert suggest_constraints(complex_context, roomy_resources).max_tokens_hint == 16000
        assert suggest_constraints(simple_context, roomy_resources).max_tokens_hint == 3000
