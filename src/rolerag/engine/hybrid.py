"""Hybrid retrieval engine: vector + keyword search, fusion and reranking."""

from __future__ import annotations

import asyncio
import logging

from rolerag.config import HybridSearchConfig
from rolerag.config import RerankConfig
from rolerag.engine.fusion import fuse_results
from rolerag.engine.fusion import passthrough
from rolerag.engine.fusion import rerank_results
from rolerag.engine.llm_adapters import EmbeddingAdapter
from rolerag.engine.schemas import FusedResult
from rolerag.engine.schemas import RetrievalCandidate
from rolerag.engine.search import SimilaritySearchAdapter
from rolerag.observability import track_latency

logger = logging.getLogger(__name__)


class HybridRetrievalEngine:
    """Fuses vector and keyword retrieval for one knowledge-base partition.

    Configuration is injected once at construction; the engine holds no
    other state, so concurrent queries never share anything mutable.
    """

    def __init__(
        self,
        search: SimilaritySearchAdapter,
        embedder: EmbeddingAdapter,
        *,
        config: HybridSearchConfig | None = None,
        rerank_config: RerankConfig | None = None,
    ) -> None:
        self._search = search
        self._embedder = embedder
        self._config = config or HybridSearchConfig()
        self._rerank = rerank_config or RerankConfig()

    @property
    def hybrid_enabled(self) -> bool:
        return self._config.enabled

    @property
    def reranking_enabled(self) -> bool:
        return self._rerank.enabled

    async def hybrid_search(
        self, query: str, partition_key: str
    ) -> list[RetrievalCandidate]:
        """Return ranked, deduplicated candidates for *query*."""
        return [result.candidate for result in await self.search(query, partition_key)]

    async def search(self, query: str, partition_key: str) -> list[FusedResult]:
        """Like ``hybrid_search`` but keeps the fusion and rerank scores."""
        async with track_latency("hybrid_retrieval.search"):
            max_results = self._config.max_results

            if not self._config.enabled:
                return passthrough(
                    await self._vector_search(query, partition_key),
                    max_results=max_results,
                )

            vector_results: list[RetrievalCandidate] = []
            try:
                vector_results, keyword_results = await asyncio.gather(
                    self._vector_search(query, partition_key),
                    self._search.keyword_search(query, partition_key, max_results),
                )
                fused = fuse_results(
                    vector_results,
                    keyword_results,
                    vector_weight=self._config.vector_weight,
                    keyword_weight=self._config.keyword_weight,
                    max_results=max_results,
                )
            except Exception:
                logger.exception(
                    "Hybrid retrieval failed for partition %s, "
                    "falling back to vector search",
                    partition_key,
                )
                if not vector_results:
                    vector_results = await self._vector_search(query, partition_key)
                return passthrough(vector_results, max_results=max_results)

            logger.info(
                "Hybrid retrieval done: vector=%d keyword=%d fused=%d",
                len(vector_results),
                len(keyword_results),
                len(fused),
            )
            return self._maybe_rerank(fused, query)

    def _maybe_rerank(self, fused: list[FusedResult], query: str) -> list[FusedResult]:
        if not self._rerank.enabled or not fused:
            return fused
        try:
            return rerank_results(
                fused,
                query,
                relevance_weight=self._rerank.relevance_weight,
                diversity_weight=self._rerank.diversity_weight,
                max_candidates=self._rerank.max_rerank_candidates,
            )
        except Exception:
            logger.exception("Reranking failed, keeping fused order")
            return fused

    async def _vector_search(
        self, query: str, partition_key: str
    ) -> list[RetrievalCandidate]:
        try:
            query_vector = await self._embedder.embed(query)
        except Exception:
            logger.exception("Query embedding failed for partition %s", partition_key)
            return []
        return await self._search.vector_search(
            query_vector, partition_key, self._config.max_results
        )
