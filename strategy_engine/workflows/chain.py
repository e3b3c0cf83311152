"""
Sequential refinement chain executor.

Runs plan steps strictly in order, feeding each step the previous step's
output. A failing step never aborts the chain: it is recorded as a
diagnostic output and the next step runs. The chain stops early when the
token budget is exhausted or a step reports very low confidence.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time

from ..backend import InferenceBackend
from ..config import ChainConfig
from ..prompts import EMPTY_PREVIOUS_OUTPUT, chain_system_prompt
from ..types import (
    ChainPlan,
    ChainResult,
    ChainStep,
    ChainStepResult,
    MergeStrategy,
    estimate_tokens,
)

logger = logging.getLogger(__name__)

CONFIDENCE_PATTERN = re.compile(r"confidence[:\s]*([0-9.]+)", re.IGNORECASE)


def extract_confidence(output: str, default: float = 0.7) -> float:
    """Self-reported ``confidence: <float>`` marker, else the default."""
    match = CONFIDENCE_PATTERN.search(output)
    if not match:
        return default
    try:
        return float(match.group(1))
    except ValueError:
        return default


def merge_results(
    results: list[ChainStepResult],
    strategy: MergeStrategy,
    insight_confidence: float = 0.6,
) -> str:
    """Combine step outputs into the final response."""
    if not results:
        return ""
    strategy = MergeStrategy(strategy)
    final = results[-1].output

    if strategy == MergeStrategy.LAST:
        return final
    if strategy == MergeStrategy.CONCAT:
        return "".join(f"\n\n{r.role.value.upper()}:\n{r.output}" for r in results)

    # Vote: final output, prefixed by insights from confident earlier steps
    insights = "\n".join(
        f"({r.role.value}): {r.output[:100]}..."
        for r in results[:-1]
        if r.confidence > insight_confidence
    )
    if not insights:
        return final
    return f"{insights}\n\n{'=' * 60}\n\nFINAL:\n{final}"


class ChainExecutor:
    """
    Executes a ChainPlan against an inference backend.

    Example:
        executor = ChainExecutor(backend)
        result = await executor.execute(decision.chain_plan, messages)
        print(result.final_response)
    """

    def __init__(self, backend: InferenceBackend, config: ChainConfig | None = None):
        self.backend = backend
        self.config = config or ChainConfig()

    async def execute(
        self,
        plan: ChainPlan,
        messages: list[dict[str, str]],
        *,
        max_total_tokens: int | None = None,
        step_timeout_s: float | None = None,
    ) -> ChainResult:
        cfg = self.config
        token_ceiling = max_total_tokens if max_total_tokens is not None else cfg.max_total_tokens
        timeout = step_timeout_s if step_timeout_s is not None else cfg.step_timeout_s

        start = time.perf_counter()
        results: list[ChainStepResult] = []
        total_tokens = 0
        previous_output = ""
        stop_reason: str | None = None

        logger.info("Starting %d-step chain", len(plan.steps))

        for index, step in enumerate(plan.steps):
            is_final = index == len(plan.steps) - 1
            result = await self._run_step(step, messages, previous_output, is_final, timeout)
            results.append(result)
            previous_output = result.output
            total_tokens += result.tokens_used

            logger.info(
                "Chain step %s: %d tokens, conf %.2f%s",
                step.role.value,
                result.tokens_used,
                result.confidence,
                " (failed)" if result.failed else "",
            )

            if is_final:
                break
            if total_tokens > token_ceiling:
                stop_reason = f"token budget exceeded ({total_tokens} > {token_ceiling})"
            elif not result.failed and result.confidence < cfg.min_step_confidence:
                stop_reason = f"low confidence from {step.role.value} ({result.confidence:.2f})"
            if stop_reason:
                logger.info("Chain early stop after step %d: %s", index + 1, stop_reason)
                break

        return ChainResult(
            final_response=merge_results(results, plan.merge_strategy, cfg.insight_confidence),
            steps=results,
            total_tokens=total_tokens,
            execution_time_ms=(time.perf_counter() - start) * 1000,
            stopped_early=stop_reason is not None,
            stop_reason=stop_reason,
        )

    async def _run_step(
        self,
        step: ChainStep,
        messages: list[dict[str, str]],
        previous_output: str,
        is_final: bool,
        timeout_s: float | None,
    ) -> ChainStepResult:
        step_start = time.perf_counter()
        prompt = [
            {
                "role": "system",
                "content": chain_system_prompt(step.role, previous_output, is_final, step.instruction),
            },
            *messages[-self.config.history_messages :],
            {"role": "user", "content": previous_output or EMPTY_PREVIOUS_OUTPUT},
        ]

        try:
            completion = await asyncio.wait_for(
                self.backend.chat(
                    step.model,
                    prompt,
                    temperature=step.temperature,
                    max_tokens=step.max_tokens,
                ),
                timeout_s,
            )
        except Exception as e:
            message = "timed out" if isinstance(e, asyncio.TimeoutError) else str(e)
            logger.error("Chain step %s on %s failed: %s", step.role.value, step.model, message)
            return ChainStepResult(
                model=step.model,
                role=step.role,
                output=(
                    f"ERROR in {step.role.value} (model: {step.model}): {message}\n\n"
                    f"This may indicate the model is not loaded. Try running: ollama pull {step.model}"
                ),
                tokens_used=self.config.failed_step_tokens,
                confidence=0.0,
                time_ms=(time.perf_counter() - step_start) * 1000,
                error=message,
            )

        output = completion.content.strip()
        return ChainStepResult(
            model=step.model,
            role=step.role,
            output=output,
            tokens_used=completion.tokens_used or estimate_tokens(output),
            confidence=extract_confidence(output, self.config.default_step_confidence),
            time_ms=(time.perf_counter() - step_start) * 1000,
        )


__all__ = [
    "ChainExecutor",
    "extract_confidence",
    "merge_results",
]
