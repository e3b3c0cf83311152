"""
Parallel ensemble vote executor.

Every member model answers the same yes/no question concurrently with a
structured verdict. Failed members are dropped from the vote; the
surviving votes are combined by weighted scoring, and an answer whose
normalized confidence misses the plan's threshold is replaced by the
NO_CONSENSUS sentinel.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from typing import Any

from ..backend import InferenceBackend
from ..config import EnsembleConfig
from ..prompts import vote_system_prompt
from ..types import (
    NO_CONSENSUS,
    EnsembleFailedError,
    EnsemblePlan,
    EnsembleResult,
    ModelVote,
    RiskLevel,
    Verdict,
    VoteTally,
)

logger = logging.getLogger(__name__)

JSON_OBJECT_PATTERN = re.compile(r"\{.*\}", re.DOTALL)


def parse_vote(content: str) -> dict[str, Any]:
    """
    Parse a member's JSON verdict.

    Replies that are not valid JSON fall back to a text heuristic: YES if
    the reply mentions "yes", else NO, at confidence 0.5.
    """
    data: dict[str, Any] | None = None
    match = JSON_OBJECT_PATTERN.search(content)
    if match:
        try:
            parsed = json.loads(match.group())
            if isinstance(parsed, dict):
                data = parsed
        except json.JSONDecodeError:
            data = None

    if data is not None:
        try:
            return {
                "verdict": Verdict(str(data.get("verdict", "")).upper()),
                "confidence": min(1.0, max(0.0, float(data.get("confidence", 0.5)))),
                "reasoning": str(data.get("reasoning", "")),
                "risk_level": RiskLevel(str(data.get("risk_level", "MEDIUM")).upper()),
            }
        except (ValueError, TypeError):
            logger.debug("Vote JSON has unexpected values, using text heuristic: %s", data)

    return {
        "verdict": Verdict.YES if "yes" in content.lower() else Verdict.NO,
        "confidence": 0.5,
        "reasoning": content[:200],
        "risk_level": RiskLevel.MEDIUM,
    }


def tally_votes(votes: list[ModelVote]) -> dict[Verdict, VoteTally]:
    breakdown = {verdict: VoteTally() for verdict in Verdict}
    for vote in votes:
        tally = breakdown[vote.verdict]
        tally.count += 1
        tally.total_weight += vote.weight
        tally.total_confidence += vote.confidence * vote.weight
    return breakdown


def weighted_consensus(
    votes: list[ModelVote],
) -> tuple[Verdict, float, dict[Verdict, VoteTally]]:
    """
    Winning verdict and its normalized confidence.

    Score per verdict is total weight times mean weighted confidence.
    Confidence is the winning score over the vote count, scaled by the
    mean score across all verdicts, capped at 1.
    """
    breakdown = tally_votes(votes)
    scores = {verdict: tally.score for verdict, tally in breakdown.items()}

    winner = Verdict.YES
    for verdict, score in scores.items():
        if score > scores[winner]:
            winner = verdict

    max_score = scores[winner]
    mean_score = sum(scores.values()) / len(scores)
    confidence = min(1.0, max_score / len(votes) * mean_score) if votes else 0.0
    return winner, confidence, breakdown


class EnsembleExecutor:
    """
    Executes an EnsemblePlan against an inference backend.

    Example:
        executor = EnsembleExecutor(backend)
        result = await executor.execute(plan, messages, "Is this code safe?")
        if not result.has_consensus:
            ...  # needs human review
    """

    def __init__(self, backend: InferenceBackend, config: EnsembleConfig | None = None):
        self.backend = backend
        self.config = config or EnsembleConfig()

    async def execute(
        self,
        plan: EnsemblePlan,
        messages: list[dict[str, str]],
        question: str,
        *,
        member_timeout_s: float | None = None,
    ) -> EnsembleResult:
        timeout = member_timeout_s if member_timeout_s is not None else self.config.member_timeout_s
        start = time.perf_counter()

        outcomes = await asyncio.gather(
            *(
                asyncio.wait_for(self._run_vote(model, messages, question, plan), timeout)
                for model in plan.models
            ),
            return_exceptions=True,
        )

        votes: list[ModelVote] = []
        failures: dict[str, str] = {}
        for model, outcome in zip(plan.models, outcomes):
            if isinstance(outcome, ModelVote):
                votes.append(outcome)
            elif isinstance(outcome, asyncio.TimeoutError):
                failures[model] = "timed out"
            elif isinstance(outcome, Exception):
                failures[model] = str(outcome) or type(outcome).__name__
            else:
                raise outcome

        for model, error in failures.items():
            logger.warning("Ensemble member %s failed: %s", model, error)

        if not votes:
            raise EnsembleFailedError(failures)

        winner, confidence, breakdown = weighted_consensus(votes)
        consensus = winner.value if confidence >= plan.min_consensus_threshold else NO_CONSENSUS

        logger.info(
            "Ensemble vote: %s (conf %.3f, threshold %.2f, %d/%d members)",
            consensus,
            confidence,
            plan.min_consensus_threshold,
            len(votes),
            len(plan.models),
        )

        return EnsembleResult(
            consensus=consensus,
            confidence=confidence,
            winning_verdict=winner,
            votes=votes,
            failures=failures,
            breakdown=breakdown,
            execution_time_ms=(time.perf_counter() - start) * 1000,
            model_agreement=len(votes) / len(plan.models),
        )

    async def _run_vote(
        self,
        model: str,
        messages: list[dict[str, str]],
        question: str,
        plan: EnsemblePlan,
    ) -> ModelVote:
        completion = await self.backend.chat(
            model,
            [{"role": "system", "content": vote_system_prompt(question)}, *messages],
            temperature=self.config.vote_temperature,
            max_tokens=self.config.vote_max_tokens,
        )
        parsed = parse_vote(completion.content)
        return ModelVote(
            model=model,
            tokens_used=completion.tokens_used,
            weight=plan.weight_for(model),
            **parsed,
        )


__all__ = [
    "EnsembleExecutor",
    "parse_vote",
    "tally_votes",
    "weighted_consensus",
]
