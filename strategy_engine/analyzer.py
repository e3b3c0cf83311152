"""
Context analysis: raw request text to RequestContext.

Detects interaction mode, file type and domain by keyword-pattern
scoring, scores complexity through a pluggable ComplexityScorer, and
summarizes the conversation so far. Deterministic and free of I/O.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Sequence

from .complexity import BACKEND_PATTERN, UI_PATTERN, ComplexityScorer, HeuristicComplexityScorer
from .types import (
    ConversationMessage,
    ConversationMetadata,
    Domain,
    FileType,
    InteractionMode,
    MessageRole,
    RecentDecision,
    RequestContext,
)

logger = logging.getLogger(__name__)

# =============================================================================
# Pattern tables
# =============================================================================

MODE_PATTERNS: dict[InteractionMode, list[re.Pattern[str]]] = {
    InteractionMode.LEARNING: [
        re.compile(r"\b(explain|teach|how|why|what is|understand|learn|tutorial|guide)\b", re.I),
        re.compile(r"\b(confused|stuck|beginner|new to|first time|basics)\b", re.I),
        re.compile(r"\b(difference between|compare|pros and cons)\b", re.I),
        re.compile(r"\b(example|show me|demo|walkthrough)\b", re.I),
    ],
    InteractionMode.CODE_REVIEW: [
        re.compile(
            r"\b(review|critique|feedback|improve|refactor|optimize|clean up|best practices)\b",
            re.I,
        ),
        re.compile(r"\b(code smell|anti-pattern|issue|bug|problem|fix)\b", re.I),
        re.compile(r"\b(performance|efficiency|readability|maintainability)\b", re.I),
        re.compile(r"\b(this code|my code|check this|look at)\b", re.I),
    ],
    InteractionMode.EXPERT: [
        re.compile(r"\b(deep dive|advanced|edge case|corner case|implementation detail)\b", re.I),
        re.compile(r"\b(architecture|design pattern|performance tuning|optimization)\b", re.I),
        re.compile(r"\b(async|concurrency|race condition|deadlock|memory leak)\b", re.I),
        re.compile(r"\b(how would you|what's the best|pattern for)\b", re.I),
    ],
}

FILE_TYPE_PATTERNS: dict[FileType, list[re.Pattern[str]]] = {
    FileType.PYTHON: [
        re.compile(r"\.(py|pyx)\b", re.I),
        re.compile(r"\b(python|asyncio|aiohttp|fastapi|django|flask|pydantic)\b", re.I),
        re.compile(r"\b(async def|await|uvicorn)\b|@app\.route", re.I),
    ],
    FileType.TYPESCRIPT: [
        re.compile(r"\.(ts|tsx)\b", re.I),
        re.compile(r"\b(typescript|interface|type|generic)\b", re.I),
        re.compile(r"\bconst.*:\s*\w+\s*=|: Promise<", re.I),
    ],
    FileType.REACT: [
        re.compile(r"\.(jsx|tsx)\b", re.I),
        re.compile(r"\b(react|useState|useEffect|Component|props|JSX)\b", re.I),
        re.compile(r"\bexport.*function|\bconst.*=.*=>", re.I),
    ],
    FileType.NEXTJS: [
        re.compile(
            r"\b(next\.js|nextjs|app router|route\.ts|layout\.tsx|page\.tsx)\b", re.I
        ),
        re.compile(r"\b(getServerSideProps|getStaticProps|API route)\b", re.I),
        re.compile(r"/app/", re.I),
    ],
    FileType.JAVASCRIPT: [
        re.compile(r"\.(js|mjs|cjs)\b", re.I),
        re.compile(r"\b(javascript|function)\b|\bconst.*=|=>", re.I),
    ],
    FileType.SQL: [
        re.compile(r"\.sql\b", re.I),
        re.compile(r"\b(SELECT|INSERT|UPDATE|DELETE|CREATE TABLE|JOIN)\b", re.I),
    ],
}

# Tie-break order: earlier wins
MODE_PRIORITY = (InteractionMode.EXPERT, InteractionMode.CODE_REVIEW, InteractionMode.LEARNING)
FILE_TYPE_PRIORITY = (
    FileType.NEXTJS,
    FileType.REACT,
    FileType.TYPESCRIPT,
    FileType.PYTHON,
    FileType.JAVASCRIPT,
    FileType.SQL,
)

POLITENESS_PATTERN = re.compile(r"\b(please|help|need|want)\b", re.I)

MAX_KEYWORDS = 10
LONG_INPUT_CHARS = 100

MODE_INTENT = {
    InteractionMode.LEARNING: "explanation",
    InteractionMode.CODE_REVIEW: "feedback",
    InteractionMode.EXPERT: "deep analysis",
}


def _best_candidate(scores: dict, priority: Sequence):
    """Highest non-zero score, ties resolved by priority order. None if all zero."""
    best = None
    for candidate in priority:
        score = scores.get(candidate, 0)
        if score > 0 and (best is None or score > scores[best]):
            best = candidate
    return best


def confidence_level(confidence: float) -> str:
    """Human-readable label for a detection confidence."""
    if confidence >= 0.8:
        return "Very High"
    if confidence >= 0.6:
        return "High"
    if confidence >= 0.4:
        return "Moderate"
    return "Low"


class ContextAnalyzer:
    """
    Builds RequestContext snapshots from raw user input.

    Example:
        analyzer = ContextAnalyzer()
        context = analyzer.analyze("Please review this code", "utils/fetch.py")
        context.mode  # InteractionMode.CODE_REVIEW
    """

    def __init__(self, scorer: ComplexityScorer | None = None):
        self.scorer = scorer or HeuristicComplexityScorer()

    def analyze(
        self,
        text: str,
        file_path_hint: str | None = None,
        *,
        history: Iterable[ConversationMessage] = (),
        mode_override: InteractionMode | None = None,
        model_override: str | None = None,
        recent_decisions: Iterable[RecentDecision] = (),
    ) -> RequestContext:
        history = tuple(history)
        detected_mode = self.detect_mode(text)
        mode = mode_override or detected_mode
        file_type = self.detect_file_type(text, file_path_hint)
        domain = self.detect_domain(text, file_type)
        assessment = self.scorer.score(text)

        context = RequestContext(
            user_message=text,
            history=history,
            mode=mode,
            domain=domain,
            file_type=file_type,
            complexity_score=assessment.score,
            confidence=self.calculate_confidence(mode, file_type, text),
            keywords=tuple(self.extract_keywords(text)),
            reasoning=self.build_reasoning(mode, file_type, domain),
            file_path_hint=file_path_hint,
            mode_override=mode_override,
            model_override=model_override,
            metadata=self.conversation_metadata(history),
            recent_decisions=tuple(recent_decisions),
        )
        logger.debug(
            "Analyzed request: mode=%s file_type=%s domain=%s complexity=%d confidence=%.2f",
            context.mode.value,
            context.file_type.value,
            context.domain.value,
            context.complexity_score,
            context.confidence,
        )
        return context

    # -------------------------------------------------------------------------
    # Detection
    # -------------------------------------------------------------------------

    def detect_mode(self, text: str) -> InteractionMode:
        scores = {
            mode: sum(1 for pattern in patterns if pattern.search(text))
            for mode, patterns in MODE_PATTERNS.items()
        }
        return _best_candidate(scores, MODE_PRIORITY) or InteractionMode.UNSET

    def detect_file_type(self, text: str, file_path_hint: str | None = None) -> FileType:
        combined = f"{text} {file_path_hint or ''}"
        scores = {
            file_type: sum(1 for pattern in patterns if pattern.search(combined))
            for file_type, patterns in FILE_TYPE_PATTERNS.items()
        }
        return _best_candidate(scores, FILE_TYPE_PRIORITY) or FileType.UNKNOWN

    def detect_domain(self, text: str, file_type: FileType) -> Domain:
        has_backend = bool(BACKEND_PATTERN.search(text)) or file_type == FileType.PYTHON
        has_ui = bool(UI_PATTERN.search(text)) or file_type in (FileType.REACT, FileType.NEXTJS)

        if has_backend and has_ui:
            return Domain.NEXTJS_FULLSTACK
        if has_backend:
            return Domain.PYTHON_BACKEND
        if has_ui or file_type in (FileType.TYPESCRIPT, FileType.JAVASCRIPT):
            return Domain.REACT_FRONTEND
        return Domain.UNDETECTED

    # -------------------------------------------------------------------------
    # Confidence, keywords, reasoning
    # -------------------------------------------------------------------------

    def calculate_confidence(self, mode: InteractionMode, file_type: FileType, text: str) -> float:
        score = 0.0
        if mode != InteractionMode.UNSET:
            score += 0.3
        if file_type != FileType.UNKNOWN:
            score += 0.3

        # Bonus for clear signals
        if len(text) > LONG_INPUT_CHARS:
            score += 0.1
        if "```" in text:
            score += 0.1
        if POLITENESS_PATTERN.search(text):
            score += 0.1

        return round(min(1.0, score), 4)

    def extract_keywords(self, text: str) -> list[str]:
        """Unique "[mode] keyword" tags for matched mode patterns, at most 10."""
        keywords: list[str] = []
        for mode, patterns in MODE_PATTERNS.items():
            for pattern in patterns:
                match = pattern.search(text)
                if match:
                    tag = f"[{mode.value}] {match.group(0).lower()}"
                    if tag not in keywords:
                        keywords.append(tag)
        return keywords[:MAX_KEYWORDS]

    def build_reasoning(self, mode: InteractionMode, file_type: FileType, domain: Domain) -> str:
        parts = []
        if mode != InteractionMode.UNSET:
            parts.append(f"Detected {mode.value} mode (asking for {MODE_INTENT[mode]})")
        if file_type != FileType.UNKNOWN:
            parts.append(f"{file_type.value} code detected")
        if domain != Domain.UNDETECTED:
            parts.append(f"Primary domain: {domain.value.replace('-', ' ', 1)}")
        return " | ".join(parts) if parts else "No strong context signals detected"

    @staticmethod
    def conversation_metadata(history: Sequence[ConversationMessage]) -> ConversationMetadata:
        latencies = [
            m.latency_ms
            for m in history
            if MessageRole(m.role) == MessageRole.ASSISTANT and m.latency_ms is not None
        ]
        return ConversationMetadata(
            message_count=len(history),
            total_tokens=sum(m.token_count for m in history),
            average_latency_ms=sum(latencies) / len(latencies) if latencies else 0.0,
        )


__all__ = [
    "ContextAnalyzer",
    "FILE_TYPE_PATTERNS",
    "MODE_PATTERNS",
    "confidence_level",
]
