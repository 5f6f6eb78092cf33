"""Embedding-based relevance ranking (cosine similarity + MMR)."""

from tinychat.core.relevance.ranker import (
    Candidate,
    RankedCandidate,
    RelevanceRanker,
    SearchOptions,
    cosine_similarity,
)

__all__ = [
    "Candidate",
    "RankedCandidate",
    "RelevanceRanker",
    "SearchOptions",
    "cosine_similarity",
]
