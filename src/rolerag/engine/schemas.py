"""Retrieval result models.

Transient per-query representations; nothing here is persisted by the
engine itself.
"""

from __future__ import annotations

from pydantic import BaseModel
from pydantic import Field


class RetrievalCandidate(BaseModel):
    """A knowledge-base fragment returned by one retrieval mode."""

    model_config = {"frozen": True}

    id: str = Field(description="Stable chunk identifier, used for deduplication.")
    content: str = Field(description="Text content of the fragment.")
    document_id: str | None = Field(
        default=None,
        description="Reference to the source document the fragment came from.",
    )
    chunk_position: int | None = Field(
        default=None,
        description="Position of the fragment within its source document.",
    )
    score: float | None = Field(
        default=None,
        description="Backend-native score (distance or text rank), if any.",
    )


class FusedResult(BaseModel):
    """A candidate with its fusion score and optional rerank scores."""

    candidate: RetrievalCandidate
    fusion_score: float = Field(
        default=0.0,
        description="Weighted sum of positional scores across retrieval modes.",
    )
    relevance_score: float | None = Field(
        default=None,
        description="Keyword-density relevance, set by reranking.",
    )
    diversity_score: float | None = Field(
        default=None,
        description="Product of (1 - jaccard) against higher-ranked results.",
    )
    rerank_score: float | None = Field(
        default=None,
        description="relevance * relevance_weight + diversity * diversity_weight.",
    )

    @property
    def id(self) -> str:
        return self.candidate.id
