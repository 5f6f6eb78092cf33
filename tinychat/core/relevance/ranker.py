"""
Relevance ranking over embedded candidates.

Candidates are scored by cosine similarity to a query, cut at an adaptive
threshold (mean + half a standard deviation), then picked greedily with
Maximal Marginal Relevance so near-duplicates don't crowd out the rest.
"""

from typing import Any

import numpy as np
from pydantic import BaseModel, Field
from sklearn.metrics.pairwise import cosine_similarity as pairwise_cosine

from tinychat.utils.logger import get_logger

logger = get_logger(__name__)


class Candidate(BaseModel):
    """Something that can be ranked: an arbitrary value plus its embedding."""

    value: Any
    embedding: list[float]


class RankedCandidate(BaseModel):
    value: Any
    score: float


class SearchOptions(BaseModel):
    max_count: int = Field(default=10, ge=0, description="Most candidates to return")
    min_count: int = Field(default=1, ge=0, description="Fewest candidates to keep")
    diversity_weight: float = Field(
        default=0.3, ge=0.0, le=1.0, description="MMR trade-off (0 = pure relevance)"
    )


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """
    Cosine similarity of two vectors.

    A zero vector has no direction and scores 0 against anything. The result
    is kept within [-1, 1]; identical vectors score 1 up to float rounding
    (e.g. 0.9999999999999998), so compare with a tolerance.
    """
    vec1 = np.asarray(a, dtype=float).reshape(1, -1)
    vec2 = np.asarray(b, dtype=float).reshape(1, -1)
    return float(np.clip(pairwise_cosine(vec1, vec2)[0][0], -1.0, 1.0))


class RelevanceRanker:
    """
    Picks a bounded, diverse subset of candidates relevant to a query.

    Deterministic: the same inputs always produce the same selection, and
    ties go to the candidate that came first.
    """

    def __init__(self, options: SearchOptions | None = None):
        self.options = options or SearchOptions()

    def rank(
        self,
        query_embedding: list[float],
        candidates: list[Candidate],
        options: SearchOptions | None = None,
    ) -> list[RankedCandidate]:
        """
        Rank candidates against a query embedding.

        Args:
            query_embedding: Embedding of the query text
            candidates: Embedded candidates
            options: Overrides the ranker's default options

        Returns:
            At most ``max_count`` candidates in selection order
        """
        if not candidates:
            return []

        options = options or self.options
        matrix = np.asarray([c.embedding for c in candidates], dtype=float)
        query = np.asarray(query_embedding, dtype=float).reshape(1, -1)
        scores = np.clip(pairwise_cosine(query, matrix)[0], -1.0, 1.0)

        mean = float(np.mean(scores))
        threshold = mean + float(np.std(scores)) / 2

        order = sorted(range(len(candidates)), key=lambda i: scores[i], reverse=True)
        pool = [i for i in order if scores[i] >= threshold]
        if len(pool) < options.min_count:
            pool = order[: options.min_count]

        selected = self._select_diverse(pool, scores, matrix, options)

        logger.debug(
            f"Ranked {len(candidates)} candidates, kept {len(pool)}, selected {len(selected)}",
            extra={"threshold": threshold, "mean": mean},
        )
        return [RankedCandidate(value=candidates[i].value, score=float(scores[i])) for i in selected]

    @staticmethod
    def _select_diverse(
        pool: list[int], scores: np.ndarray, matrix: np.ndarray, options: SearchOptions
    ) -> list[int]:
        """Greedy MMR over ``pool``, which is ordered by descending relevance."""
        if not pool:
            return []

        weight = options.diversity_weight
        similarity = pairwise_cosine(matrix[pool])
        remaining = list(range(len(pool)))
        chosen: list[int] = []

        while remaining and len(chosen) < options.max_count:
            best_pos = 0
            best_score = float("-inf")
            for pos, idx in enumerate(remaining):
                redundancy = max((similarity[idx][c] for c in chosen), default=0.0)
                mmr_score = (1 - weight) * scores[pool[idx]] - weight * redundancy
                if mmr_score > best_score:
                    best_score = mmr_score
                    best_pos = pos
            chosen.append(remaining.pop(best_pos))

        return [pool[idx] for idx in chosen]
