"""Similarity search adapter over a vector + full-text backend.

Both lookups are best-effort: a backend failure is logged and turned
into an empty list so hybrid retrieval degrades instead of aborting.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Protocol
from typing import runtime_checkable

from rolerag.engine.schemas import RetrievalCandidate

logger = logging.getLogger(__name__)


@runtime_checkable
class SearchBackend(Protocol):
    """Nearest-neighbour and full-text lookup scoped to a knowledge base."""

    async def vector_search(
        self, query_vector: Sequence[float], partition_key: str, limit: int
    ) -> list[RetrievalCandidate]:
        """Return candidates ordered by ascending distance."""

    async def keyword_search(
        self, query_text: str, partition_key: str, limit: int
    ) -> list[RetrievalCandidate]:
        """Return candidates ordered by descending text rank."""


class SimilaritySearchAdapter:
    """Best-effort wrapper around a ``SearchBackend``."""

    def __init__(self, backend: SearchBackend) -> None:
        self._backend = backend

    async def vector_search(
        self, query_vector: Sequence[float], partition_key: str, limit: int
    ) -> list[RetrievalCandidate]:
        if not query_vector or limit <= 0:
            return []
        try:
            results = await self._backend.vector_search(
                query_vector, partition_key, limit
            )
        except Exception:
            logger.exception("Vector search failed for partition %s", partition_key)
            return []
        return list(results)[:limit]

    async def keyword_search(
        self, query_text: str, partition_key: str, limit: int
    ) -> list[RetrievalCandidate]:
        if not query_text.strip() or limit <= 0:
            return []
        try:
            results = await self._backend.keyword_search(
                query_text, partition_key, limit
            )
        except Exception:
            logger.exception("Keyword search failed for partition %s", partition_key)
            return []
        return list(results)[:limit]
