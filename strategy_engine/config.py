"""
Configuration management for the strategy engine.

Every heuristic constant the engine uses lives here as a dataclass
default, so deployments can tune them from a JSON file without touching
code. Environment variables (optionally from a project ``.env``) override
the file for the handful of settings that differ per machine.
"""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Literal

from dotenv import load_dotenv

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "strategy-engine" / "config.json"

# Auto-load .env from project root
_project_root = Path(__file__).parent.parent
_env_file = _project_root / ".env"
if _env_file.exists():
    load_dotenv(_env_file)


@dataclass
class ResourceConfig:
    """
    Limits applied by the constraint enforcer.

    A limit left as None disables its rule. CPU throttling always applies.
    """

    max_ram_mb: float | None = 8000
    max_gpu_layers: int | None = None
    thermal_threshold_c: float | None = 85.0
    battery_aware: bool = True
    max_response_time_ms: int | None = None
    max_cpu_threads: int | None = None

    # Rule constants
    ram_token_cap: int = 4000
    cpu_throttle_percent: float = 85.0
    cpu_token_factor: float = 0.7
    cpu_temperature_cap: float = 0.2
    thermal_token_factor: float = 0.5
    low_battery_percent: float = 20.0
    battery_token_cap: int = 2000
    soft_ram_fraction: float = 0.5


@dataclass
class ComplexityWeights:
    """Weights of the heuristic complexity scorer. All non-negative."""

    base: float = 10.0
    per_code_block: float = 8.0
    per_code_line: float = 0.5
    code_line_cap: float = 20.0
    per_technical_keyword: float = 3.0
    technical_keyword_cap: float = 24.0
    per_async_level: float = 6.0
    per_branch: float = 1.5
    branch_cap: float = 15.0
    per_declaration: float = 2.0
    declaration_cap: float = 12.0
    length_per_100_chars: float = 1.0
    length_cap: float = 15.0
    cross_domain: float = 10.0

    def __post_init__(self) -> None:
        for name, value in asdict(self).items():
            if value < 0:
                raise ValueError(f"Complexity weight {name} must be non-negative, got {value}")


@dataclass
class AdaptiveConfig:
    """Thresholds for the adaptive strategy."""

    constrained_ram_mb: float = 10000
    constrained_cpu_percent: float = 75.0
    small_penalty_divisor: float = 200.0
    small_penalty_cap: float = 0.3
    large_bonus_divisor: float = 300.0
    large_bonus_cap: float = 0.4
    preference_margin: float = 0.9  # small model wins while small > large * margin
    theme_boost: float = 0.15
    collaborator_confidence: float = 0.7
    fallback_confidence: float = 0.7
    max_confidence: float = 0.98
    constrained_max_tokens: int = 6000
    default_max_tokens: int = 12000
    learning_timeout_s: float = 2.0


@dataclass
class WorkflowConfig:
    """How the workflow strategy picks and shapes a workflow."""

    mode: Literal["auto", "chain", "ensemble"] = "auto"
    critical_ram_mb: float = 6000
    ensemble_min_ram_mb: float = 8000
    complex_chain_ram_mb: float = 10000
    large_member_ram_mb: float = 16000
    chain_constrained_ram_mb: float = 6000
    chain_constrained_cpu_percent: float = 90.0
    ensemble_themes: tuple[str, ...] = ("security", "architecture", "refactoring", "debugging")
    chain_themes: tuple[str, ...] = ("documentation", "code-generation", "implementation")
    critical_themes: tuple[str, ...] = ("security", "architecture", "debugging")


@dataclass
class ChainConfig:
    """Limits for the chain executor."""

    max_total_tokens: int = 25000
    min_step_confidence: float = 0.3
    default_step_confidence: float = 0.7
    insight_confidence: float = 0.6
    failed_step_tokens: int = 50
    history_messages: int = 8
    step_timeout_s: float | None = 300.0


@dataclass
class EnsembleConfig:
    """Limits for the ensemble executor."""

    vote_max_tokens: int = 300
    vote_temperature: float = 0.1
    member_timeout_s: float | None = 120.0


@dataclass
class LedgerConfig:
    """Where and how decisions are persisted."""

    db_path: str = "~/.local/share/strategy-engine/ledger.db"
    recorder_max_attempts: int = 3
    recorder_retry_delay_s: float = 0.5


@dataclass
class BackendConfig:
    """Inference backend connection."""

    kind: Literal["ollama", "openai"] = "ollama"
    base_url: str = "http://localhost:11434"
    api_key: str = "ollama"
    timeout_s: float = 300.0
    history_messages: int = 10


@dataclass
class EngineConfig:
    """
    Complete engine configuration.

    Sections mirror the components they tune.
    """

    default_strategy: str = "adaptive"
    log_level: str = "INFO"
    resources: ResourceConfig = field(default_factory=ResourceConfig)
    complexity: ComplexityWeights = field(default_factory=ComplexityWeights)
    adaptive: AdaptiveConfig = field(default_factory=AdaptiveConfig)
    workflow: WorkflowConfig = field(default_factory=WorkflowConfig)
    chain: ChainConfig = field(default_factory=ChainConfig)
    ensemble: EnsembleConfig = field(default_factory=EnsembleConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    backend: BackendConfig = field(default_factory=BackendConfig)

    @classmethod
    def load(cls, path: Path | None = None) -> EngineConfig:
        """Load configuration from file, then apply environment overrides."""
        if path is None:
            path = DEFAULT_CONFIG_PATH

        data: dict[str, Any] = {}
        if path.exists():
            with open(path) as f:
                data = json.load(f)

        workflow_data = dict(data.get("workflow", {}))
        for key in ("ensemble_themes", "chain_themes", "critical_themes"):
            if key in workflow_data:
                workflow_data[key] = tuple(workflow_data[key])

        config = cls(
            default_strategy=data.get("default_strategy", "adaptive"),
            log_level=data.get("log_level", "INFO"),
            resources=ResourceConfig(**data.get("resources", {})),
            complexity=ComplexityWeights(**data.get("complexity", {})),
            adaptive=AdaptiveConfig(**data.get("adaptive", {})),
            workflow=WorkflowConfig(**workflow_data),
            chain=ChainConfig(**data.get("chain", {})),
            ensemble=EnsembleConfig(**data.get("ensemble", {})),
            ledger=LedgerConfig(**data.get("ledger", {})),
            backend=BackendConfig(**data.get("backend", {})),
        )
        config.apply_env()
        return config

    def apply_env(self) -> None:
        """Override settings from STRATEGY_ENGINE_* environment variables."""
        if db_path := os.environ.get("STRATEGY_ENGINE_DB"):
            self.ledger.db_path = db_path
        if base_url := os.environ.get("STRATEGY_ENGINE_BACKEND_URL"):
            self.backend.base_url = base_url
        if strategy := os.environ.get("STRATEGY_ENGINE_STRATEGY"):
            self.default_strategy = strategy
        if log_level := os.environ.get("STRATEGY_ENGINE_LOG_LEVEL"):
            self.log_level = log_level.upper()

    def save(self, path: Path | None = None) -> None:
        """Save configuration to file."""
        if path is None:
            path = DEFAULT_CONFIG_PATH

        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w") as f:
            json.dump(asdict(self), f, indent=2)


# Default configuration instance
default_config = EngineConfig()


__all__ = [
    "AdaptiveConfig",
    "BackendConfig",
    "ChainConfig",
    "ComplexityWeights",
    "DEFAULT_CONFIG_PATH",
    "EngineConfig",
    "EnsembleConfig",
    "LedgerConfig",
    "ResourceConfig",
    "WorkflowConfig",
    "default_config",
]
