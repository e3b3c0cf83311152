"""
Adaptive strategy engine: resource-aware model routing for local LLM inference.

Picks which local model answers a request, with what parameters, and
whether a single call, a sequential refinement chain, or a parallel
ensemble vote should run. Implements:
- Context analysis (mode, file type, domain, complexity)
- Fixed and learning routing strategies
- Resource constraint enforcement
- Chain and ensemble workflow execution
- A persistent performance ledger fed by outcome reports
"""

__version__ = "0.1.0"

# Pipeline entry point
from .orchestrator import FeedbackReceipt, HandledRequest, Orchestrator

# Request analysis
from .analyzer import ContextAnalyzer
from .complexity import ComplexityAssessment, HeuristicComplexityScorer, extract_signals

# Configuration
from .catalog import DEFAULT_MODELS, ModelCatalog
from .config import EngineConfig

# Routing
from .constraints import ConstraintEnforcer, ValidationResult
from .strategies import (
    AdaptiveStrategy,
    CostStrategy,
    QualityStrategy,
    SpeedStrategy,
    StrategyRegistry,
    WorkflowStrategy,
    default_registry,
)

# Learning and persistence
from .learning import HistoricalParameterTuner, KeywordThemeDetector
from .ledger import BackgroundRecorder, PerformanceLedger

# Execution
from .backend import Completion, OllamaBackend, OpenAICompatibleBackend, create_backend
from .resources import ResourceMonitor, StaticResourceMonitor
from .workflows import ChainExecutor, EnsembleExecutor

# Types
from .types import (
    NO_CONSENSUS,
    BackendError,
    ChainPlan,
    ChainStep,
    ConversationMessage,
    DecisionKind,
    EnsembleFailedError,
    EnsemblePlan,
    ExecutionError,
    ExecutionResult,
    InteractionMode,
    LedgerError,
    Outcome,
    RequestContext,
    ResourceState,
    RoutingDecision,
    StrategyEngineError,
    UserFeedback,
)

__all__ = [
    "NO_CONSENSUS",
    "DEFAULT_MODELS",
    "AdaptiveStrategy",
    "BackendError",
    "BackgroundRecorder",
    "ChainExecutor",
    "ChainPlan",
    "ChainStep",
    "Completion",
    "ComplexityAssessment",
    "ConstraintEnforcer",
    "ContextAnalyzer",
    "ConversationMessage",
    "CostStrategy",
    "DecisionKind",
    "EngineConfig",
    "EnsembleExecutor",
    "EnsembleFailedError",
    "EnsemblePlan",
    "ExecutionError",
    "ExecutionResult",
    "FeedbackReceipt",
    "HandledRequest",
    "HeuristicComplexityScorer",
    "HistoricalParameterTuner",
    "InteractionMode",
    "KeywordThemeDetector",
    "LedgerError",
    "ModelCatalog",
    "OllamaBackend",
    "OpenAICompatibleBackend",
    "Orchestrator",
    "Outcome",
    "PerformanceLedger",
    "QualityStrategy",
    "RequestContext",
    "ResourceMonitor",
    "ResourceState",
    "RoutingDecision",
    "SpeedStrategy",
    "StaticResourceMonitor",
    "StrategyEngineError",
    "StrategyRegistry",
    "UserFeedback",
    "ValidationResult",
    "WorkflowStrategy",
    "create_backend",
    "default_registry",
    "extract_signals",
    "__version__",
]
