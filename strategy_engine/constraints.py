"""
Resource-aware constraint enforcement.

Applies hard limits and auto-downgrades to a strategy's decision based on
the machine's current state. Every rule is independent and cumulative;
each rule that fires appends a clause to the decision's reasoning.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Any

from .catalog import ModelCatalog
from .config import ResourceConfig
from .types import RequestContext, ResourceState, RoutingDecision

logger = logging.getLogger(__name__)

# RAM tiers for the downgrade rule
SMALL_ONLY_RAM_MB = 6000
MID_Q4_RAM_MB = 12000


@dataclass
class ValidationResult:
    """Soft validation outcome. Violations are reported, never enforced."""

    valid: bool
    violations: list[str] = field(default_factory=list)


@dataclass
class ConstraintSuggestion:
    """Recommended limits for a request, plus a complexity-based token hint."""

    config: ResourceConfig
    max_tokens_hint: int | None = None


class ConstraintEnforcer:
    """
    Pure transform from (decision, resources) to a constrained decision.

    The values a strategy chose are kept in ``metadata["unconstrained"]``
    and every application starts from them, so applying the enforcer
    again with the same resources yields the same decision.
    """

    def __init__(self, catalog: ModelCatalog | None = None, config: ResourceConfig | None = None):
        self.catalog = catalog or ModelCatalog()
        self.config = config or ResourceConfig()

    def apply(
        self,
        decision: RoutingDecision,
        resources: ResourceState,
        config: ResourceConfig | None = None,
    ) -> RoutingDecision:
        cfg = config or self.config
        base: dict[str, Any] = decision.metadata.get("unconstrained") or {
            "selected_model": decision.selected_model,
            "max_tokens": decision.max_tokens,
            "temperature": decision.temperature,
            "streaming": decision.streaming,
            "reasoning": decision.reasoning,
        }

        model: str = base["selected_model"]
        max_tokens: float = base["max_tokens"]
        temperature: float = base["temperature"]
        streaming: bool = base["streaming"]
        clauses: list[str] = []

        # 1. RAM
        if cfg.max_ram_mb is not None and resources.available_ram_mb < cfg.max_ram_mb:
            model = self.downgrade_for_ram(resources.available_ram_mb)
            max_tokens = min(max_tokens, cfg.ram_token_cap)
            clauses.append(f"RAM limited ({round(resources.available_ram_mb)}MB)")

        # 2. GPU layers
        if cfg.max_gpu_layers is not None and resources.gpu_layers > cfg.max_gpu_layers:
            model = self.catalog.cpu_friendly().name
            clauses.append("GPU layers limited")

        # 3. CPU
        if resources.cpu_percent > cfg.cpu_throttle_percent:
            max_tokens *= cfg.cpu_token_factor
            temperature = min(temperature, cfg.cpu_temperature_cap)
            clauses.append(f"High CPU ({round(resources.cpu_percent)}%)")

        # 4. Thermal
        if (
            cfg.thermal_threshold_c is not None
            and resources.temperature_c is not None
            and resources.temperature_c > cfg.thermal_threshold_c
        ):
            streaming = True
            max_tokens *= cfg.thermal_token_factor
            clauses.append("Thermal throttling")

        # 5. Battery
        if (
            cfg.battery_aware
            and resources.on_battery
            and resources.battery_percent is not None
            and resources.battery_percent < cfg.low_battery_percent
        ):
            model = self.catalog.smallest().name
            max_tokens = cfg.battery_token_cap
            streaming = True
            clauses.append("Battery saver mode")

        # 6. Response time
        if cfg.max_response_time_ms is not None:
            limit = cfg.max_response_time_ms // 2
            if max_tokens > limit:
                max_tokens = limit
                clauses.append(f"Response time limited ({cfg.max_response_time_ms}ms)")

        reasoning = base["reasoning"]
        if clauses:
            reasoning = f"{reasoning} | constraints: {', '.join(clauses)}"
            logger.info("Constraints applied to %s: %s", decision.id, ", ".join(clauses))

        metadata = dict(decision.metadata)
        metadata["unconstrained"] = base
        metadata["constraints_applied"] = clauses

        return dataclasses.replace(
            decision,
            selected_model=model,
            max_tokens=max(1, int(max_tokens)),
            temperature=temperature,
            streaming=streaming,
            reasoning=reasoning,
            metadata=metadata,
        )

    def downgrade_for_ram(self, available_ram_mb: float) -> str:
        """Model that fits the available RAM."""
        if available_ram_mb < SMALL_ONLY_RAM_MB:
            return self.catalog.smallest().name
        mid_class = self.catalog.mid().size_class
        if available_ram_mb < MID_Q4_RAM_MB:
            return self.catalog.variant(mid_class, "q4").name
        return self.catalog.variant(mid_class, "q5").name

    def is_valid_decision(
        self,
        decision: RoutingDecision,
        resources: ResourceState,
        config: ResourceConfig | None = None,
    ) -> ValidationResult:
        """
        Check for critical resource problems without blocking.

        The only violation is a RAM shortage below half the model's requirement.
        """
        cfg = config or self.config
        violations = []

        required = self.catalog.ram_requirement(decision.selected_model)
        if resources.available_ram_mb < required * cfg.soft_ram_fraction:
            violations.append(
                f"Critical RAM shortage: {round(resources.available_ram_mb)}MB available, "
                f"{required}MB recommended"
            )

        if violations:
            logger.warning("Resource warnings (not blocking) for %s: %s", decision.id, violations)
        return ValidationResult(valid=not violations, violations=violations)


def recommended_config(resources: ResourceState) -> ResourceConfig:
    """Limits suited to the machine's current state."""
    ram = resources.available_ram_mb
    return ResourceConfig(
        max_ram_mb=ram * 0.7,
        max_gpu_layers=35 if ram > 16000 else 25,
        max_cpu_threads=min(resources.cpu_threads, 8),
        thermal_threshold_c=85.0,
        battery_aware=resources.on_battery,
        max_response_time_ms=30000 if resources.cpu_percent > 70 else 60000,
    )


def suggest_constraints(context: RequestContext, resources: ResourceState) -> ConstraintSuggestion:
    """Recommended limits plus a token hint adjusted for request complexity."""
    hint = None
    if context.complexity_score > 80:
        hint = 16000
    elif context.complexity_score < 30:
        hint = 3000
    return ConstraintSuggestion(config=recommended_config(resources), max_tokens_hint=hint)


__all__ = [
    "ConstraintEnforcer",
    "ConstraintSuggestion",
    "ValidationResult",
    "recommended_config",
    "suggest_constraints",
]
