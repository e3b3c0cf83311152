"""
Request complexity scoring.

The default scorer extracts regex-derived signals from the request text
and combines them with non-negative weights into a 0-100 score. It is a
heuristic, not a parser: anything implementing ComplexityScorer can be
substituted without changing the RequestContext contract.

Must be fast (<10ms), so no LLM calls.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Protocol

from .config import ComplexityWeights
from .types import ComplexityBand, ComplexitySignals

# Fenced code regions; the language tag line is not counted as code
CODE_BLOCK_PATTERN = re.compile(r"```[^\n]*\n?(.*?)```", re.DOTALL)

TECHNICAL_KEYWORD_PATTERN = re.compile(
    r"\b(async|await|promise|concurrent|race condition|deadlock|callback|generator"
    r"|iterator|event loop|microtask|typescript|generic|decorator|reflection"
    r"|architecture|pattern|design|scale|distributed|cache|database|schema|migration"
    r"|transaction|thread|mutex|protocol|algorithm|optimi[sz]ation|memory leak)\b",
    re.IGNORECASE,
)

# Async depth levels, checked deepest first
CONCURRENCY_PATTERN = re.compile(
    r"\b(concurren\w*|race conditions?|deadlocks?|mutex\w*|semaphores?|thread pools?"
    r"|parallel\w*|lock-free|atomic\w*)\b",
    re.IGNORECASE,
)
PROMISE_PATTERN = re.compile(
    r"\b(promise\w*|futures?|asyncio\.(gather|create_task|wait)|Promise\.all)\b|\.then\(",
    re.IGNORECASE,
)
ASYNC_PATTERN = re.compile(r"\b(async|await|coroutines?|callbacks?)\b", re.IGNORECASE)

BRANCH_PATTERN = re.compile(
    r"\b(if|elif|else|for|while|switch|case|try|except|catch|finally|raise|throw)\b"
)
DECLARATION_PATTERN = re.compile(
    r"^\s*(import\s|from\s+\S+\s+import\s|def\s|async\s+def\s|class\s|function\s"
    r"|export\s|(const|let|var)\s+\w+\s*=\s*(async\s*)?\()",
    re.MULTILINE,
)

# Domain vocabularies, shared with the analyzer's domain detection
BACKEND_PATTERN = re.compile(
    r"\b(async def|await|asyncio|fastapi|django|backend|server)\b", re.IGNORECASE
)
UI_PATTERN = re.compile(r"\b(useState|useEffect|component|frontend|ui|react)\b", re.IGNORECASE)


@dataclass
class ComplexityAssessment:
    """A score, its band, and the signals it was computed from."""

    score: int
    signals: ComplexitySignals
    contributions: dict[str, float] = field(default_factory=dict)

    @property
    def band(self) -> ComplexityBand:
        return ComplexityBand.from_score(self.score)


class ComplexityScorer(Protocol):
    """Anything that can score request text on the 0-100 scale."""

    def score(self, text: str) -> ComplexityAssessment: ...


def extract_signals(text: str) -> ComplexitySignals:
    """Extract complexity signals from request text."""
    blocks = CODE_BLOCK_PATTERN.findall(text)
    code_lines = sum(1 for block in blocks for line in block.splitlines() if line.strip())

    if CONCURRENCY_PATTERN.search(text):
        async_depth = 3
    elif PROMISE_PATTERN.search(text):
        async_depth = 2
    elif ASYNC_PATTERN.search(text):
        async_depth = 1
    else:
        async_depth = 0

    return ComplexitySignals(
        code_block_count=len(blocks),
        code_line_count=code_lines,
        technical_keyword_count=len(TECHNICAL_KEYWORD_PATTERN.findall(text)),
        async_depth=async_depth,
        branch_count=len(BRANCH_PATTERN.findall(text)),
        declaration_count=len(DECLARATION_PATTERN.findall(text)),
        input_length=len(text),
        cross_domain=bool(BACKEND_PATTERN.search(text) and UI_PATTERN.search(text)),
    )


class HeuristicComplexityScorer:
    """
    Weighted-sum complexity scorer.

    Each signal contributes weight * count, with the noisier signals
    (line counts, keyword counts, input length) capped so a single long
    paste cannot dominate. The sum is clamped to [0, 100].
    """

    def __init__(self, weights: ComplexityWeights | None = None):
        self.weights = weights or ComplexityWeights()

    def score(self, text: str) -> ComplexityAssessment:
        signals = extract_signals(text)
        w = self.weights

        contributions = {
            "base": w.base,
            "code_blocks": w.per_code_block * signals.code_block_count,
            "code_lines": min(w.per_code_line * signals.code_line_count, w.code_line_cap),
            "technical_keywords": min(
                w.per_technical_keyword * signals.technical_keyword_count,
                w.technical_keyword_cap,
            ),
            "async_depth": w.per_async_level * signals.async_depth,
            "branches": min(w.per_branch * signals.branch_count, w.branch_cap),
            "declarations": min(w.per_declaration * signals.declaration_count, w.declaration_cap),
            "length": min(w.length_per_100_chars * signals.input_length / 100, w.length_cap),
            "cross_domain": w.cross_domain if signals.cross_domain else 0.0,
        }

        total = sum(contributions.values())
        score = int(round(min(100.0, max(0.0, total))))
        return ComplexityAssessment(score=score, signals=signals, contributions=contributions)


__all__ = [
    "BACKEND_PATTERN",
    "ComplexityAssessment",
    "ComplexityScorer",
    "HeuristicComplexityScorer",
    "UI_PATTERN",
    "extract_signals",
]
