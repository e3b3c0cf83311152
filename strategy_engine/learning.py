"""
Learning collaborators for the adaptive strategies.

Two optional, pluggable services:

- ThemeDetector: classifies a request into a conversation theme and
  suggests a model and temperature for it.
- ParameterTuner: recommends sampling parameters for a theme and
  complexity from previously rated experiments.

Both are consulted with a timeout; a strategy that cannot reach them
continues on complexity heuristics alone. The bundled implementations
keep their history in memory and learn from feedback the orchestrator
forwards to them.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, Field

from .catalog import ModelCatalog
from .types import ComplexityBand

logger = logging.getLogger(__name__)


class ThemeDetection(BaseModel):
    """Theme detector output."""

    theme: str
    confidence: float = Field(ge=0.0, le=1.0)
    suggested_model: str
    suggested_temperature: float = Field(ge=0.0, le=2.0)
    reasoning: str = ""


class ParameterRecommendation(BaseModel):
    """Parameter tuner output."""

    temperature: float = Field(ge=0.0, le=2.0)
    max_tokens: int = Field(gt=0)
    enable_tools: bool
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str = ""


@runtime_checkable
class ThemeDetector(Protocol):
    async def detect_theme(self, text: str) -> ThemeDetection: ...


@runtime_checkable
class ParameterTuner(Protocol):
    async def recommend(self, theme: str, complexity: int) -> ParameterRecommendation: ...


# =============================================================================
# Keyword theme detector
# =============================================================================

THEME_KEYWORDS: dict[str, tuple[tuple[str, ...], int]] = {
    # theme: (keywords, default complexity)
    "debugging": (
        ("error", "bug", "fix", "issue", "problem", "crash", "fail", "broken", "not working"),
        60,
    ),
    "architecture": (
        ("design", "architecture", "pattern", "structure", "system", "scalable", "microservice"),
        80,
    ),
    "code-generation": (
        ("create", "generate", "write", "implement", "build", "add", "function", "class"),
        50,
    ),
    "refactoring": (("refactor", "improve", "optimize", "clean", "reorganize", "simplify"), 65),
    "explanation": (
        ("explain", "what is", "how does", "why", "understand", "meaning", "clarify"),
        40,
    ),
    "testing": (("test", "unit test", "integration", "mock", "coverage", "assertion"), 55),
    "performance": (
        ("performance", "optimize", "slow", "speed", "memory", "efficient", "benchmark"),
        70,
    ),
    "security": (
        ("security", "vulnerability", "auth", "encryption", "xss", "sql injection", "secure"),
        75,
    ),
    "documentation": (("document", "comment", "readme", "explain", "describe", "api docs"), 35),
    "database": (
        ("database", "sql", "query", "schema", "migration", "orm", "postgres", "mongodb"),
        60,
    ),
    "api-development": (
        ("api", "endpoint", "rest", "graphql", "route", "controller", "middleware"),
        55,
    ),
    "frontend": (
        ("ui", "component", "react", "vue", "angular", "css", "styling", "responsive"),
        50,
    ),
}

DEFAULT_THEME = "code-generation"
CREATIVE_THEMES = frozenset({"architecture", "refactoring", "documentation"})
PRECISE_THEMES = frozenset({"debugging", "security", "database", "api-development"})


@dataclass
class ThemeHistory:
    """Running feedback statistics for one theme."""

    occurrences: int = 0
    average_quality: float = 0.0
    best_model: str | None = None
    best_quality: float = 0.0


class KeywordThemeDetector:
    """
    Keyword-scoring theme detector with in-memory feedback history.

    Multi-word keywords score one point per word. Confidence grows with
    the winning score and gets a bonus once the theme has feedback.
    """

    def __init__(self, catalog: ModelCatalog | None = None):
        self.catalog = catalog or ModelCatalog()
        self._history: dict[str, ThemeHistory] = defaultdict(ThemeHistory)
        self._lock = threading.Lock()

    async def detect_theme(self, text: str) -> ThemeDetection:
        return self.detect(text)

    def detect(self, text: str) -> ThemeDetection:
        lowered = text.lower()
        theme, max_score = DEFAULT_THEME, 0
        for candidate, (keywords, _) in THEME_KEYWORDS.items():
            score = sum(len(k.split()) for k in keywords if k in lowered)
            if score > max_score:
                theme, max_score = candidate, score

        history = self.history(theme)

        confidence = min(0.95, max_score / 5 + (0.2 if history.occurrences > 0 else 0.0))
        if history.occurrences:
            history_note = f"historical avg quality {history.average_quality:.2f}"
        else:
            history_note = "no historical data"

        return ThemeDetection(
            theme=theme,
            confidence=confidence,
            suggested_model=self.suggest_model(theme, history),
            suggested_temperature=self.suggest_temperature(theme),
            reasoning=f"Detected {theme} theme (conf: {confidence:.2f}), {history_note}",
        )

    def suggest_model(self, theme: str, history: ThemeHistory | None = None) -> str:
        """Proven model when the theme has good history, else by the theme's default complexity."""
        if (
            history is not None
            and history.occurrences >= 3
            and history.average_quality > 0.75
            and history.best_model
        ):
            return history.best_model

        default_complexity = THEME_KEYWORDS.get(theme, ((), 50))[1]
        if default_complexity >= 70:
            return self.catalog.largest().name
        return self.catalog.mid().name

    @staticmethod
    def suggest_temperature(theme: str) -> float:
        if theme in CREATIVE_THEMES:
            return 0.6
        if theme in PRECISE_THEMES:
            return 0.3
        return 0.4

    def record_feedback(self, theme: str, model: str, quality: float) -> None:
        """Fold a rated response into the theme's history."""
        with self._lock:
            history = self._history[theme]
            history.average_quality = (
                history.average_quality * history.occurrences + quality
            ) / (history.occurrences + 1)
            history.occurrences += 1
            if quality > history.best_quality:
                history.best_model = model
                history.best_quality = quality
            logger.info(
                "Updated %s theme: quality %.2f over %d responses",
                theme,
                history.average_quality,
                history.occurrences,
            )

    def history(self, theme: str) -> ThemeHistory:
        """Copy of the theme's feedback statistics."""
        with self._lock:
            if theme not in self._history:
                return ThemeHistory()
            return ThemeHistory(**vars(self._history[theme]))


# =============================================================================
# Historical parameter tuner
# =============================================================================


@dataclass(frozen=True)
class ParameterExperiment:
    """Sampling parameters used for one response and how it was rated."""

    theme: str
    band: ComplexityBand
    temperature: float
    max_tokens: int
    enable_tools: bool
    quality: float


class HistoricalParameterTuner:
    """
    Recommends parameters by averaging well-rated experiments.

    Experiments are bucketed by theme and complexity band. Confidence grows
    with the number of good experiments in the bucket; an empty bucket
    yields a low-confidence band default, which strategies ignore.
    """

    BAND_DEFAULTS: dict[ComplexityBand, tuple[float, int, bool]] = {
        ComplexityBand.SIMPLE: (0.3, 4000, False),
        ComplexityBand.MODERATE: (0.4, 8000, True),
        ComplexityBand.COMPLEX: (0.5, 12000, True),
    }

    def __init__(self, good_quality: float = 0.75, max_history: int = 500):
        self.good_quality = good_quality
        self.max_history = max_history
        self._experiments: list[ParameterExperiment] = []
        self._lock = threading.Lock()

    async def recommend(self, theme: str, complexity: int) -> ParameterRecommendation:
        return self.recommend_sync(theme, complexity)

    def recommend_sync(self, theme: str, complexity: int) -> ParameterRecommendation:
        band = ComplexityBand.from_score(complexity)
        with self._lock:
            good = [
                e
                for e in self._experiments
                if e.theme == theme and e.band == band and e.quality >= self.good_quality
            ]

        if not good:
            temperature, max_tokens, enable_tools = self.BAND_DEFAULTS[band]
            return ParameterRecommendation(
                temperature=temperature,
                max_tokens=max_tokens,
                enable_tools=enable_tools,
                confidence=0.3,
                reasoning=f"No rated experiments for {theme}/{band.value}, using band defaults",
            )

        n = len(good)
        return ParameterRecommendation(
            temperature=round(sum(e.temperature for e in good) / n, 2),
            max_tokens=int(sum(e.max_tokens for e in good) / n),
            enable_tools=sum(e.enable_tools for e in good) * 2 >= n,
            confidence=min(0.95, 0.5 + 0.1 * n),
            reasoning=f"Averaged {n} well-rated experiments for {theme}/{band.value}",
        )

    def record_experiment(
        self,
        theme: str,
        complexity: int,
        temperature: float,
        max_tokens: int,
        enable_tools: bool,
        quality: float,
    ) -> None:
        experiment = ParameterExperiment(
            theme=theme,
            band=ComplexityBand.from_score(complexity),
            temperature=temperature,
            max_tokens=max_tokens,
            enable_tools=enable_tools,
            quality=quality,
        )
        with self._lock:
            self._experiments.append(experiment)
            if len(self._experiments) > self.max_history:
                del self._experiments[: len(self._experiments) - self.max_history]


__all__ = [
    "HistoricalParameterTuner",
    "KeywordThemeDetector",
    "ParameterExperiment",
    "ParameterRecommendation",
    "ParameterTuner",
    "THEME_KEYWORDS",
    "ThemeDetection",
    "ThemeDetector",
    "ThemeHistory",
]
