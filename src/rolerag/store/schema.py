"""Neo4j schema initialization: constraints, lookup indexes and search indexes.

All statements use ``IF NOT EXISTS`` so they are safe to run repeatedly
(idempotent).  Only uniqueness constraints are enforced at the DB level;
the remaining invariants are handled by Pydantic validation.
"""

from __future__ import annotations

from neo4j import AsyncDriver

VECTOR_INDEX_NAME = "chunk_embedding"
FULLTEXT_INDEX_NAME = "chunk_content"

# ---------------------------------------------------------------------------
# Constraint statements (Community Edition: uniqueness only)
# ---------------------------------------------------------------------------

_CONSTRAINTS = [
    "CREATE CONSTRAINT chunk_unique_id IF NOT EXISTS FOR (n:Chunk) REQUIRE n.id IS UNIQUE",
    "CREATE CONSTRAINT character_unique_id IF NOT EXISTS FOR (n:Character) REQUIRE n.id IS UNIQUE",
    "CREATE CONSTRAINT profile_unique_character IF NOT EXISTS FOR (n:CharacterProfile) REQUIRE n.character_id IS UNIQUE",
    "CREATE CONSTRAINT chat_record_unique_id IF NOT EXISTS FOR (n:ChatRecord) REQUIRE n.id IS UNIQUE",
    "CREATE CONSTRAINT roleplay_session_unique_id IF NOT EXISTS FOR (n:RolePlaySession) REQUIRE n.session_id IS UNIQUE",
    "CREATE CONSTRAINT roleplay_turn_unique_id IF NOT EXISTS FOR (n:RolePlayTurn) REQUIRE n.id IS UNIQUE",
]

# ---------------------------------------------------------------------------
# Index statements
# ---------------------------------------------------------------------------

_NODE_INDEXES = [
    # Partition filtering
    "CREATE INDEX chunk_kb IF NOT EXISTS FOR (n:Chunk) ON (n.knowledge_base_id)",
    # Owner lookups
    "CREATE INDEX character_owner IF NOT EXISTS FOR (n:Character) ON (n.owner_id)",
    "CREATE INDEX chat_record_owner IF NOT EXISTS FOR (n:ChatRecord) ON (n.owner_id)",
    "CREATE INDEX roleplay_session_owner IF NOT EXISTS FOR (n:RolePlaySession) ON (n.owner_id)",
    # History lookups
    "CREATE INDEX chat_record_session IF NOT EXISTS FOR (n:ChatRecord) ON (n.session_id)",
    "CREATE INDEX roleplay_turn_session IF NOT EXISTS FOR (n:RolePlayTurn) ON (n.session_id)",
]

# Search indexes (separate because they use a different syntax)
_FULLTEXT_INDEXES = [
    (
        f"CREATE FULLTEXT INDEX {FULLTEXT_INDEX_NAME} IF NOT EXISTS "
        "FOR (n:Chunk) ON EACH [n.content]"
    ),
]


def _vector_index_statement(dimensions: int) -> str:
    return (
        f"CREATE VECTOR INDEX {VECTOR_INDEX_NAME} IF NOT EXISTS "
        "FOR (n:Chunk) ON (n.embedding) "
        "OPTIONS {indexConfig: {"
        f"`vector.dimensions`: {int(dimensions)}, "
        "`vector.similarity_function`: 'cosine'"
        "}}"
    )


async def init_schema(driver: AsyncDriver, *, embedding_dimensions: int = 1536) -> None:
    """Create all indexes and constraints (idempotent).

    Runs each statement in its own transaction to avoid batching issues
    with schema commands in Neo4j.
    """
    all_statements = (
        _CONSTRAINTS
        + _NODE_INDEXES
        + _FULLTEXT_INDEXES
        + [_vector_index_statement(embedding_dimensions)]
    )
    async with driver.session() as session:
        for stmt in all_statements:
            await session.run(stmt)
