"""Score fusion and reranking.

Pure functions: no I/O and no configuration lookups, so fused and
reranked orders are reproducible for a fixed input.
"""

from __future__ import annotations

from collections.abc import Sequence

from rolerag.engine.schemas import FusedResult
from rolerag.engine.schemas import RetrievalCandidate

# ---------------------------------------------------------------------------
# Fusion
# ---------------------------------------------------------------------------


def positional_scores(results: Sequence[RetrievalCandidate]) -> list[float]:
    """Return ``1 - index / len`` for each position (top ~1.0, bottom -> 0.0)."""
    size = len(results)
    return [1.0 - index / size for index in range(size)]


def fuse_results(
    vector_results: Sequence[RetrievalCandidate],
    keyword_results: Sequence[RetrievalCandidate],
    *,
    vector_weight: float,
    keyword_weight: float,
    max_results: int,
) -> list[FusedResult]:
    """Merge two ranked lists into one deduplicated, fusion-scored list.

    Each list contributes ``positional_score * weight`` per candidate id.
    A candidate present in both lists gets the sum of both contributions
    and appears once (the first occurrence, vector side first, is kept).
    Ties are broken by candidate id ascending.
    """
    scores: dict[str, float] = {}
    candidates: dict[str, RetrievalCandidate] = {}

    for results, weight in (
        (vector_results, vector_weight),
        (keyword_results, keyword_weight),
    ):
        for candidate, position_score in zip(results, positional_scores(results)):
            scores[candidate.id] = scores.get(candidate.id, 0.0) + (
                position_score * weight
            )
            candidates.setdefault(candidate.id, candidate)

    ordered = sorted(candidates, key=lambda cid: (-scores[cid], cid))
    return [
        FusedResult(candidate=candidates[cid], fusion_score=scores[cid])
        for cid in ordered[:max_results]
    ]


def passthrough(
    results: Sequence[RetrievalCandidate], *, max_results: int
) -> list[FusedResult]:
    """Wrap single-mode results, scoring them by position only."""
    bounded = list(results)[:max_results]
    return [
        FusedResult(candidate=candidate, fusion_score=score)
        for candidate, score in zip(bounded, positional_scores(bounded))
    ]


# ---------------------------------------------------------------------------
# Reranking
# ---------------------------------------------------------------------------


def _query_tokens(query: str) -> list[str]:
    return [word for word in query.lower().split() if len(word) > 1]


def _word_set(text: str) -> set[str]:
    return {word for word in text.lower().split() if len(word) > 1}


def count_occurrences(text: str, pattern: str) -> int:
    """Count non-overlapping occurrences of *pattern* in *text*."""
    if not pattern:
        return 0
    return text.count(pattern)


def relevance_score(content: str, query: str) -> float:
    """Keyword density, each hit weighted by ``1 / len(token)``, length-penalized."""
    lowered = content.lower()
    score = 0.0
    for token in _query_tokens(query):
        score += count_occurrences(lowered, token) * (1.0 / len(token))
    length_penalty = max(0.1, 1.0 - len(lowered) / 10000.0)
    return score * length_penalty


def jaccard_similarity(first: str, second: str) -> float:
    """Jaccard similarity of whitespace-tokenized word sets (tokens len > 1)."""
    words_a = _word_set(first)
    words_b = _word_set(second)
    union = words_a | words_b
    if not union:
        return 0.0
    return len(words_a & words_b) / len(union)


def diversity_scores(results: Sequence[FusedResult]) -> list[float]:
    """Product of ``1 - jaccard`` against every higher-ranked result."""
    contents = [result.candidate.content for result in results]
    scores: list[float] = []
    for index, content in enumerate(contents):
        score = 1.0
        for previous in contents[:index]:
            score *= 1.0 - jaccard_similarity(content, previous)
        scores.append(max(0.0, score))
    return scores


def rerank_results(
    results: Sequence[FusedResult],
    query: str,
    *,
    relevance_weight: float,
    diversity_weight: float,
    max_candidates: int | None = None,
) -> list[FusedResult]:
    """Reorder fused results by combined relevance and diversity.

    Only the first *max_candidates* results are rescored; anything past
    the cap keeps its fused order after the reranked head.
    """
    head = list(results if max_candidates is None else results[:max_candidates])
    tail = list(results[len(head) :])

    diversity = diversity_scores(head)
    rescored: list[FusedResult] = []
    for result, diversity_value in zip(head, diversity):
        relevance = relevance_score(result.candidate.content, query)
        rescored.append(
            result.model_copy(
                update={
                    "relevance_score": relevance,
                    "diversity_score": diversity_value,
                    "rerank_score": relevance * relevance_weight
                    + diversity_value * diversity_weight,
                }
            )
        )

    rescored.sort(key=lambda r: (-(r.rerank_score or 0.0), r.id))
    return rescored + tail
