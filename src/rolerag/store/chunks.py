"""Neo4j-backed ``SearchBackend`` over knowledge-base chunks.

``:Chunk`` nodes carry ``knowledge_base_id``, ``document_id``,
``chunk_position``, ``content`` and ``embedding``.  Chunking and
embedding of uploaded documents happen upstream; ``add_chunk`` is the
ingestion entry point they call.
"""

from __future__ import annotations

import re
from collections.abc import Sequence

from neo4j import AsyncDriver

from rolerag.engine.schemas import RetrievalCandidate
from rolerag.store.schema import FULLTEXT_INDEX_NAME
from rolerag.store.schema import VECTOR_INDEX_NAME

# The vector index is global; over-fetch so partition filtering still
# leaves enough neighbours, widening while other partitions crowd them out.
_VECTOR_OVERSAMPLE = 4
_VECTOR_MAX_CANDIDATES = 4096

_LUCENE_SPECIAL_RE = re.compile(r'([+\-!(){}\[\]^"~*?:\\/&|])')


def escape_lucene(text: str) -> str:
    """Escape Lucene query syntax so user text is matched literally."""
    return _LUCENE_SPECIAL_RE.sub(r"\\\1", text)


def _to_candidate(record: dict) -> RetrievalCandidate:
    return RetrievalCandidate(
        id=record["id"],
        content=record["content"] or "",
        document_id=record.get("document_id"),
        chunk_position=record.get("chunk_position"),
        score=record.get("score"),
    )


class Neo4jChunkSearch:
    """Vector and full-text lookup of chunks, scoped to one knowledge base."""

    def __init__(self, driver: AsyncDriver) -> None:
        self._driver = driver

    async def add_chunk(
        self,
        *,
        chunk_id: str,
        knowledge_base_id: str,
        content: str,
        embedding: Sequence[float],
        document_id: str | None = None,
        chunk_position: int | None = None,
    ) -> None:
        """Create or replace one chunk."""
        query = (
            "MERGE (c:Chunk {id: $id}) "
            "SET c.knowledge_base_id = $kb, c.content = $content, "
            "c.embedding = $embedding, c.document_id = $document_id, "
            "c.chunk_position = $chunk_position"
        )
        async with self._driver.session() as session:
            await session.run(
                query,
                id=chunk_id,
                kb=knowledge_base_id,
                content=content,
                embedding=[float(v) for v in embedding],
                document_id=document_id,
                chunk_position=chunk_position,
            )

    async def delete_knowledge_base(self, knowledge_base_id: str) -> int:
        query = (
            "MATCH (c:Chunk {knowledge_base_id: $kb}) "
            "DETACH DELETE c RETURN count(c) AS cnt"
        )
        async with self._driver.session() as session:
            result = await session.run(query, kb=knowledge_base_id)
            record = await result.single()
            return record["cnt"] if record else 0

    async def vector_search(
        self, query_vector: Sequence[float], partition_key: str, limit: int
    ) -> list[RetrievalCandidate]:
        """Nearest chunks by cosine similarity, closest first."""
        query = (
            f"CALL db.index.vector.queryNodes('{VECTOR_INDEX_NAME}', $k, $embedding) "
            "YIELD node, score "
            "WHERE node.knowledge_base_id = $kb "
            "RETURN node.id AS id, node.content AS content, "
            "node.document_id AS document_id, "
            "node.chunk_position AS chunk_position, score "
            "ORDER BY score DESC, id ASC "
            "LIMIT $limit"
        )
        embedding = [float(v) for v in query_vector]
        k = limit * _VECTOR_OVERSAMPLE
        async with self._driver.session() as session:
            while True:
                result = await session.run(
                    query, k=k, embedding=embedding, kb=partition_key, limit=limit
                )
                hits = [_to_candidate(record.data()) async for record in result]
                if len(hits) >= limit or k >= _VECTOR_MAX_CANDIDATES:
                    return hits
                k = min(k * _VECTOR_OVERSAMPLE, _VECTOR_MAX_CANDIDATES)

    async def keyword_search(
        self, query_text: str, partition_key: str, limit: int
    ) -> list[RetrievalCandidate]:
        """Full-text matches, highest Lucene rank first."""
        query = (
            f"CALL db.index.fulltext.queryNodes('{FULLTEXT_INDEX_NAME}', $text) "
            "YIELD node, score "
            "WHERE node.knowledge_base_id = $kb "
            "RETURN node.id AS id, node.content AS content, "
            "node.document_id AS document_id, "
            "node.chunk_position AS chunk_position, score "
            "ORDER BY score DESC, id ASC "
            "LIMIT $limit"
        )
        async with self._driver.session() as session:
            result = await session.run(
                query,
                text=escape_lucene(query_text),
                kb=partition_key,
                limit=limit,
            )
            return [_to_candidate(record.data()) async for record in result]
