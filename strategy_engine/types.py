"""
Shared type definitions for the strategy engine.

Holds the request/decision data model that flows through the pipeline
(analyzer -> strategy -> constraint enforcer -> workflow executor ->
ledger), the workflow result records, and the error classes.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class MessageRole(str, Enum):
    """Role in conversation."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class InteractionMode(str, Enum):
    """How the user wants to be answered."""

    LEARNING = "learning"
    CODE_REVIEW = "code-review"
    EXPERT = "expert"
    UNSET = "unset"


class Domain(str, Enum):
    """Primary technical domain of a request."""

    PYTHON_BACKEND = "python-backend"
    REACT_FRONTEND = "react-frontend"
    NEXTJS_FULLSTACK = "nextjs-fullstack"
    UNDETECTED = "undetected"


class FileType(str, Enum):
    """File type the request is about."""

    PYTHON = "python"
    TYPESCRIPT = "typescript"
    REACT = "react"
    NEXTJS = "nextjs"
    JAVASCRIPT = "javascript"
    SQL = "sql"
    UNKNOWN = "unknown"


class ComplexityBand(str, Enum):
    """Coarse complexity bucket derived from the 0-100 score."""

    SIMPLE = "simple"  # < 30
    MODERATE = "moderate"  # [30, 70)
    COMPLEX = "complex"  # >= 70

    @classmethod
    def from_score(cls, score: float) -> ComplexityBand:
        if score < 30:
            return cls.SIMPLE
        if score < 70:
            return cls.MODERATE
        return cls.COMPLEX


class DecisionKind(str, Enum):
    """How a decision is executed."""

    SINGLE = "single"
    CHAIN = "chain"
    ENSEMBLE = "ensemble"


class ChainRole(str, Enum):
    """Role a model plays inside a chain."""

    DRAFT = "draft"
    REFINE = "refine"
    REVIEW = "review"
    VALIDATE = "validate"
    CRITIQUE = "critique"


class MergeStrategy(str, Enum):
    """How chain step outputs are combined."""

    LAST = "last"
    CONCAT = "concat"
    VOTE = "vote"


class VotingStrategy(str, Enum):
    """How ensemble votes are combined."""

    WEIGHTED = "weighted"
    CONSENSUS = "consensus"


class Verdict(str, Enum):
    """Structured answer an ensemble member returns."""

    YES = "YES"
    NO = "NO"
    MAYBE = "MAYBE"


class RiskLevel(str, Enum):
    """Risk level reported by an ensemble member."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class UserFeedback(str, Enum):
    """Feedback a user gives on a response."""

    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


# Quality score implied by bare user feedback
FEEDBACK_QUALITY: dict[UserFeedback, float] = {
    UserFeedback.POSITIVE: 0.95,
    UserFeedback.NEGATIVE: 0.3,
    UserFeedback.NEUTRAL: 0.7,
}

# Answer returned by an ensemble whose winner is not trusted enough
NO_CONSENSUS = "NO CONSENSUS - needs human review"

# Recent decisions carried on a request context
MAX_RECENT_DECISIONS = 10

CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Rough token estimate (4 chars per token)."""
    return len(text) // CHARS_PER_TOKEN


def new_decision_id() -> str:
    """Generate a unique, time-ordered decision id."""
    return f"dec_{int(time.time() * 1000)}_{uuid.uuid4().hex[:10]}"


# =============================================================================
# Request context
# =============================================================================


@dataclass(frozen=True)
class ConversationMessage:
    """A single message in conversation history."""

    role: MessageRole
    content: str
    tokens: int | None = None
    latency_ms: float | None = None

    @property
    def token_count(self) -> int:
        return self.tokens if self.tokens is not None else estimate_tokens(self.content)

    def to_chat(self) -> dict[str, str]:
        return {"role": MessageRole(self.role).value, "content": self.content}


@dataclass(frozen=True)
class ConversationMetadata:
    """Running statistics for the conversation a request belongs to."""

    message_count: int = 0
    total_tokens: int = 0
    average_latency_ms: float = 0.0


@dataclass(frozen=True)
class RecentDecision:
    """Compact view of an earlier decision in the same conversation."""

    decision_id: str
    strategy: str
    model: str
    complexity_score: int
    timestamp: float


@dataclass(frozen=True)
class RequestContext:
    """
    Immutable snapshot of one request, built once by the analyzer.

    Mode, domain and file type use their UNSET/UNDETECTED/UNKNOWN members
    when nothing was detected; strategies have defined behavior for those.
    """

    user_message: str
    history: tuple[ConversationMessage, ...] = ()
    mode: InteractionMode = InteractionMode.UNSET
    domain: Domain = Domain.UNDETECTED
    file_type: FileType = FileType.UNKNOWN
    complexity_score: int = 50
    confidence: float = 0.0
    keywords: tuple[str, ...] = ()
    reasoning: str = ""
    file_path_hint: str | None = None
    mode_override: InteractionMode | None = None
    model_override: str | None = None
    metadata: ConversationMetadata = field(default_factory=ConversationMetadata)
    recent_decisions: tuple[RecentDecision, ...] = ()

    def __post_init__(self) -> None:
        if not 0 <= self.complexity_score <= 100:
            raise ValueError(f"complexity_score must be in [0, 100], got {self.complexity_score}")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be in [0, 1], got {self.confidence}")
        if len(self.recent_decisions) > MAX_RECENT_DECISIONS:
            object.__setattr__(
                self, "recent_decisions", tuple(self.recent_decisions[-MAX_RECENT_DECISIONS:])
            )

    @property
    def complexity_band(self) -> ComplexityBand:
        return ComplexityBand.from_score(self.complexity_score)

    def chat_messages(self, history_limit: int | None = None) -> list[dict[str, str]]:
        """History plus the current user message, in chat-completion form."""
        history = self.history if history_limit is None else self.history[-history_limit:]
        messages = [m.to_chat() for m in history]
        messages.append({"role": MessageRole.USER.value, "content": self.user_message})
        return messages


class ComplexitySignals(BaseModel):
    """
    Signals extracted from a request for complexity scoring.

    Regex-derived approximations, not a parse of the code.
    """

    code_block_count: int = Field(default=0, ge=0)
    code_line_count: int = Field(default=0, ge=0)
    technical_keyword_count: int = Field(default=0, ge=0)
    async_depth: int = Field(default=0, ge=0, le=3)
    branch_count: int = Field(default=0, ge=0)
    declaration_count: int = Field(default=0, ge=0)
    input_length: int = Field(default=0, ge=0)
    cross_domain: bool = False


# =============================================================================
# Resources and catalog
# =============================================================================


@dataclass(frozen=True)
class ResourceState:
    """Point-in-time host resource reading. Never cached across requests."""

    available_ram_mb: float
    gpu_available: bool
    gpu_layers: int
    cpu_threads: int
    cpu_percent: float
    temperature_c: float | None = None
    on_battery: bool = False
    battery_percent: float | None = None
    sampled_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class ModelDescriptor:
    """Static catalog entry for a model."""

    name: str
    display_name: str
    size_class: str  # "3B", "7B", "16B"
    tier: str  # fast, balanced, expert
    strengths: tuple[str, ...] = ()
    weaknesses: tuple[str, ...] = ()
    ram_required_mb: int = 8000
    gpu_required: bool = False
    context_window: int = 8192

    @property
    def size_billions(self) -> float:
        return float(self.size_class.rstrip("bB"))


# =============================================================================
# Routing decision
# =============================================================================


@dataclass(frozen=True)
class ChainStep:
    """One step of a sequential refinement chain."""

    model: str
    role: ChainRole
    max_tokens: int
    temperature: float
    instruction: str = ""


@dataclass(frozen=True)
class ChainPlan:
    """Ordered chain steps plus how to merge their outputs."""

    steps: tuple[ChainStep, ...]
    merge_strategy: MergeStrategy = MergeStrategy.VOTE

    def __post_init__(self) -> None:
        if not self.steps:
            raise ValueError("ChainPlan requires at least one step")


@dataclass(frozen=True)
class EnsemblePlan:
    """Models voted in parallel, with per-model weights."""

    models: tuple[str, ...]
    weights: dict[str, float] = field(default_factory=dict)
    voting_strategy: VotingStrategy = VotingStrategy.WEIGHTED
    min_consensus_threshold: float = 0.7

    def __post_init__(self) -> None:
        if not self.models:
            raise ValueError("EnsemblePlan requires at least one model")
        if not 0.0 <= self.min_consensus_threshold <= 1.0:
            raise ValueError(
                f"min_consensus_threshold must be in [0, 1], got {self.min_consensus_threshold}"
            )

    def weight_for(self, model: str) -> float:
        """Exact weight, else the longest key that prefixes the model name, else 1.0."""
        if model in self.weights:
            return self.weights[model]
        prefixes = [key for key in self.weights if model.startswith(key)]
        if prefixes:
            return self.weights[max(prefixes, key=len)]
        return 1.0


@dataclass
class RoutingDecision:
    """
    The engine's routing/execution plan for one request.

    A decision is single-call, chained or ensembled: at most one of
    ``chain_plan`` and ``ensemble_plan`` is set.
    """

    strategy_name: str
    selected_model: str
    temperature: float
    max_tokens: int
    reasoning: str
    confidence: float
    complexity_score: int
    id: str = field(default_factory=new_decision_id)
    timestamp: float = field(default_factory=time.time)
    fallback_models: list[str] = field(default_factory=list)
    streaming: bool = True
    enable_tools: bool = False
    max_tool_loops: int = 0
    chain_plan: ChainPlan | None = None
    ensemble_plan: EnsemblePlan | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.chain_plan is not None and self.ensemble_plan is not None:
            raise ValueError("A decision cannot carry both a chain plan and an ensemble plan")
        self.confidence = min(1.0, max(0.0, float(self.confidence)))

    @property
    def kind(self) -> DecisionKind:
        if self.chain_plan is not None:
            return DecisionKind.CHAIN
        if self.ensemble_plan is not None:
            return DecisionKind.ENSEMBLE
        return DecisionKind.SINGLE

    @property
    def all_models(self) -> list[str]:
        """All models in order of preference."""
        return [self.selected_model, *self.fallback_models]

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind.value
        return data


# =============================================================================
# Ledger records
# =============================================================================


@dataclass(frozen=True)
class Outcome:
    """Observed result of executing a decision."""

    response_quality: float
    user_feedback: UserFeedback | None = None
    response_time_ms: float = 0.0
    tokens_used: int = 0
    error_occurred: bool = False
    retry_count: int = 0

    def __post_init__(self) -> None:
        if not 0.0 <= self.response_quality <= 1.0:
            raise ValueError(f"response_quality must be in [0, 1], got {self.response_quality}")

    @classmethod
    def from_feedback(cls, feedback: UserFeedback | str, **kwargs: Any) -> Outcome:
        """Build an outcome whose quality is implied by the user's feedback."""
        feedback = UserFeedback(feedback)
        return cls(response_quality=FEEDBACK_QUALITY[feedback], user_feedback=feedback, **kwargs)


@dataclass
class PerformanceRecord:
    """One ledger row: a decision and, once reported, its outcome."""

    decision_id: str
    timestamp: float
    strategy: str
    model: str
    complexity_score: int
    confidence: float
    response_quality: float | None = None
    user_feedback: UserFeedback | None = None
    response_time_ms: float | None = None
    tokens_used: int | None = None
    error_occurred: bool | None = None
    retry_count: int | None = None
    outcome_at: float | None = None

    @property
    def has_outcome(self) -> bool:
        return self.outcome_at is not None


@dataclass(frozen=True)
class PerformanceSummary:
    """
    Aggregate performance for a strategy or model.

    With no recorded decisions this is the explicit low-confidence default
    (``is_default`` set, neutral 0.5 rates).
    """

    name: str
    total_decisions: int = 0
    rated_decisions: int = 0
    average_quality: float = 0.5
    success_rate: float = 0.5
    average_latency_ms: float = 0.0
    is_default: bool = True

    @classmethod
    def default(cls, name: str, total_decisions: int = 0) -> PerformanceSummary:
        return cls(name=name, total_decisions=total_decisions)


# =============================================================================
# Workflow results
# =============================================================================


@dataclass
class ChainStepResult:
    """Output of one chain step (or its diagnostic when it failed)."""

    model: str
    role: ChainRole
    output: str
    tokens_used: int
    confidence: float
    time_ms: float
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None


@dataclass
class ChainResult:
    """Result of a chain run."""

    final_response: str
    steps: list[ChainStepResult]
    total_tokens: int
    execution_time_ms: float
    stopped_early: bool = False
    stop_reason: str | None = None


@dataclass
class ModelVote:
    """A single ensemble member's structured verdict."""

    model: str
    verdict: Verdict
    confidence: float
    reasoning: str
    risk_level: RiskLevel
    tokens_used: int = 0
    weight: float = 1.0


@dataclass
class VoteTally:
    """Per-verdict accumulation used for weighted voting."""

    count: int = 0
    total_weight: float = 0.0
    total_confidence: float = 0.0  # sum of confidence * weight

    @property
    def score(self) -> float:
        return self.total_weight * (self.total_confidence / max(self.count, 1))


@dataclass
class EnsembleResult:
    """
    Result of an ensemble vote.

    ``consensus`` is either a verdict value or the NO_CONSENSUS sentinel;
    check ``has_consensus`` before treating it as an answer.
    """

    consensus: str
    confidence: float
    winning_verdict: Verdict
    votes: list[ModelVote]
    failures: dict[str, str]
    breakdown: dict[Verdict, VoteTally]
    execution_time_ms: float
    model_agreement: float

    @property
    def has_consensus(self) -> bool:
        return self.consensus != NO_CONSENSUS


@dataclass
class ExecutionResult:
    """What the caller gets back after executing a decision."""

    decision_id: str
    kind: DecisionKind
    text: str
    model_used: str
    tokens_used: int = 0
    latency_ms: float = 0.0
    chain: ChainResult | None = None
    ensemble: EnsembleResult | None = None
    attempts: list[str] = field(default_factory=list)

    @property
    def needs_review(self) -> bool:
        return self.ensemble is not None and not self.ensemble.has_consensus


# =============================================================================
# Error classes
# =============================================================================


class StrategyEngineError(Exception):
    """Base class for all strategy engine errors."""


class BackendError(StrategyEngineError):
    """
    The inference backend was unreachable or returned an error.

    Carries an HTTP-like status so callers can tell connection problems
    (status 0) from server-side failures.
    """

    def __init__(self, status: int, message: str, model: str | None = None):
        self.status = status
        self.message = message
        self.model = model
        prefix = f"[{model}] " if model else ""
        super().__init__(f"{prefix}backend error {status}: {message}")


class ExecutionError(StrategyEngineError):
    """A single-call decision could not be executed on any candidate model."""

    def __init__(self, message: str, retryable: bool = True, attempts: list[str] | None = None):
        self.retryable = retryable
        self.attempts = attempts or []
        super().__init__(message)


class EnsembleFailedError(StrategyEngineError):
    """Every ensemble member failed, so no vote could be taken."""

    def __init__(self, failures: dict[str, str]):
        self.failures = failures
        detail = "; ".join(f"{model}: {err}" for model, err in failures.items())
        super().__init__(f"All ensemble models failed ({detail})")


class LedgerError(StrategyEngineError):
    """The performance ledger could not read or write its store."""


__all__ = [
    "BackendError",
    "CHARS_PER_TOKEN",
    "ChainPlan",
    "ChainResult",
    "ChainRole",
    "ChainStep",
    "ChainStepResult",
    "ComplexityBand",
    "ComplexitySignals",
    "ConversationMessage",
    "ConversationMetadata",
    "DecisionKind",
    "Domain",
    "EnsembleFailedError",
    "EnsemblePlan",
    "EnsembleResult",
    "ExecutionError",
    "ExecutionResult",
    "FEEDBACK_QUALITY",
    "FileType",
    "InteractionMode",
    "LedgerError",
    "MAX_RECENT_DECISIONS",
    "MergeStrategy",
    "MessageRole",
    "ModelDescriptor",
    "ModelVote",
    "NO_CONSENSUS",
    "Outcome",
    "PerformanceRecord",
    "PerformanceSummary",
    "RecentDecision",
    "RequestContext",
    "ResourceState",
    "RiskLevel",
    "RoutingDecision",
    "StrategyEngineError",
    "UserFeedback",
    "Verdict",
    "VoteTally",
    "VotingStrategy",
    "estimate_tokens",
    "new_decision_id",
]
