"""
Multi-model workflow executors: sequential chain and parallel ensemble.
"""

from .chain import ChainExecutor, extract_confidence, merge_results
from .ensemble import EnsembleExecutor, parse_vote, weighted_consensus

__all__ = [
    "ChainExecutor",
    "EnsembleExecutor",
    "extract_confidence",
    "merge_results",
    "parse_vote",
    "weighted_consensus",
]
