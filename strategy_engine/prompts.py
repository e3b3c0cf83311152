"""
Prompt templates for chain steps, ensemble votes and interaction modes.
"""

from __future__ import annotations

from .types import ChainRole, InteractionMode

# =============================================================================
# Chain role prompts
# =============================================================================

ROLE_PROMPTS: dict[ChainRole, str] = {
    ChainRole.DRAFT: (
        "DRAFT. Produce a quick working first version. Cover the core of the request, "
        "skip edge cases, keep it short."
    ),
    ChainRole.REFINE: (
        'REFINE. Improve this draft:\n\n"""{previous}"""\n\n'
        "Make it production-ready: error handling, types, readability."
    ),
    ChainRole.VALIDATE: (
        'VALIDATE. Check this work:\n\n"""{previous}"""\n\n'
        "List every bug, security problem and performance issue. "
        "End with a line 'confidence: <0-1>'."
    ),
    ChainRole.REVIEW: (
        'EXPERT REVIEW. Final pass over:\n\n"""{previous}"""\n\n'
        "Check edge cases, scalability and maintainability, then give the final version."
    ),
    ChainRole.CRITIQUE: (
        'CRITIQUE. Be blunt about:\n\n"""{previous}"""\n\n'
        "Point out every flaw, code smell and anti-pattern."
    ),
}

FINAL_STEP_SUFFIX = "This is the FINAL OUTPUT."
OUTPUT_ONLY_SUFFIX = "Respond only with the improved code or analysis."
EMPTY_PREVIOUS_OUTPUT = "Start from scratch."


def chain_system_prompt(
    role: ChainRole, previous_output: str, is_final: bool, instruction: str = ""
) -> str:
    """System prompt for one chain step."""
    parts = [ROLE_PROMPTS[ChainRole(role)].format(previous=previous_output)]
    if instruction:
        parts.append(instruction)
    if is_final:
        parts.append(FINAL_STEP_SUFFIX)
    parts.append(OUTPUT_ONLY_SUFFIX)
    return " ".join(parts)


# =============================================================================
# Ensemble vote prompt
# =============================================================================

VOTE_PROMPT = """EXPERT VOTE. Answer the question "{question}" with JSON only:
{{
  "verdict": "YES" | "NO" | "MAYBE",
  "confidence": 0.1-1.0,
  "reasoning": "brief explanation",
  "risk_level": "LOW" | "MEDIUM" | "HIGH"
}}"""


def vote_system_prompt(question: str) -> str:
    return VOTE_PROMPT.format(question=question)


# =============================================================================
# Interaction mode prompts
# =============================================================================

MODE_PROMPTS: dict[InteractionMode, str] = {
    InteractionMode.LEARNING: (
        "You are a patient programming mentor. Explain concepts step by step, "
        "use small examples, and check understanding before moving on."
    ),
    InteractionMode.CODE_REVIEW: (
        "You are a thorough code reviewer. Point out bugs, risks and unclear code, "
        "ordered by severity, and show concrete fixes."
    ),
    InteractionMode.EXPERT: (
        "You are a senior engineer and systems architect. Go deep on trade-offs, "
        "edge cases and performance, and assume an experienced reader."
    ),
    InteractionMode.UNSET: "You are a helpful, precise software engineering assistant.",
}


def mode_system_prompt(mode: InteractionMode) -> str:
    return MODE_PROMPTS[InteractionMode(mode)]


__all__ = [
    "MODE_PROMPTS",
    "ROLE_PROMPTS",
    "VOTE_PROMPT",
    "chain_system_prompt",
    "mode_system_prompt",
    "vote_system_prompt",
]
