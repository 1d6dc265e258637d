"""Neo4j-backed ``RecordStore``.

Every record is a node holding its full Pydantic JSON dump in a
``payload`` property, plus the handful of properties used for lookups
and ordering.  Records are upserted with ``MERGE`` on their key.
"""

from __future__ import annotations

from typing import TypeVar

from neo4j import AsyncDriver
from pydantic import BaseModel

from rolerag.chat.schemas import ChatRecord
from rolerag.chat.schemas import RolePlaySession
from rolerag.chat.schemas import RolePlayTurnRecord
from rolerag.profile.schemas import Character
from rolerag.profile.schemas import CharacterProfile

_M = TypeVar("_M", bound=BaseModel)


def _load(model_cls: type[_M], record) -> _M | None:
    if record is None:
        return None
    return model_cls.model_validate_json(record["payload"])


class Neo4jRecordStore:
    """Async persistence of characters, profiles and conversation history."""

    def __init__(self, driver: AsyncDriver) -> None:
        self._driver = driver

    # ----- helpers -----

    async def _upsert(
        self, label: str, key: str, key_value: str, props: dict, model: BaseModel
    ) -> None:
        query = (
            f"MERGE (n:{label} {{{key}: $key_value}}) "
            "SET n += $props, n.payload = $payload"
        )
        async with self._driver.session() as session:
            await session.run(
                query,
                key_value=key_value,
                props=props,
                payload=model.model_dump_json(),
            )

    async def _fetch_one(self, query: str, **params: object):
        async with self._driver.session() as session:
            result = await session.run(query, **params)
            return await result.single()

    async def _fetch_payloads(self, query: str, **params: object) -> list[str]:
        async with self._driver.session() as session:
            result = await session.run(query, **params)
            return [record["payload"] async for record in result]

    async def _delete_count(self, query: str, **params: object) -> int:
        record = await self._fetch_one(query, **params)
        return record["cnt"] if record else 0

    # ----- characters -----

    async def save_character(self, character: Character) -> None:
        await self._upsert(
            "Character",
            "id",
            character.id,
            {
                "owner_id": character.owner_id,
                "knowledge_base_id": character.knowledge_base_id,
                "name": character.name,
                "status": character.status.value,
            },
            character,
        )

    async def get_character(self, character_id: str) -> Character | None:
        record = await self._fetch_one(
            "MATCH (n:Character {id: $id}) RETURN n.payload AS payload",
            id=character_id,
        )
        return _load(Character, record)

    async def find_character_by_name(
        self, owner_id: str, name: str
    ) -> Character | None:
        record = await self._fetch_one(
            "MATCH (n:Character {owner_id: $owner_id, name: $name}) "
            "RETURN n.payload AS payload LIMIT 1",
            owner_id=owner_id,
            name=name,
        )
        return _load(Character, record)

    async def list_characters(self, owner_id: str) -> list[Character]:
        payloads = await self._fetch_payloads(
            "MATCH (n:Character {owner_id: $owner_id}) "
            "RETURN n.payload AS payload ORDER BY n.name, n.id",
            owner_id=owner_id,
        )
        return [Character.model_validate_json(p) for p in payloads]

    async def delete_character(self, character_id: str) -> bool:
        """Delete a character together with its profile."""
        await self._delete_count(
            "MATCH (n:CharacterProfile {character_id: $id}) "
            "DETACH DELETE n RETURN count(n) AS cnt",
            id=character_id,
        )
        deleted = await self._delete_count(
            "MATCH (n:Character {id: $id}) DETACH DELETE n RETURN count(n) AS cnt",
            id=character_id,
        )
        return deleted > 0

    # ----- profiles -----

    async def save_profile(self, profile: CharacterProfile) -> None:
        await self._upsert(
            "CharacterProfile",
            "character_id",
            profile.character_id,
            {"status": profile.status.value, "version": profile.version},
            profile,
        )

    async def get_profile(self, character_id: str) -> CharacterProfile | None:
        record = await self._fetch_one(
            "MATCH (n:CharacterProfile {character_id: $character_id}) "
            "RETURN n.payload AS payload",
            character_id=character_id,
        )
        return _load(CharacterProfile, record)

    # ----- Q&A records -----

    async def save_chat_record(self, record: ChatRecord) -> None:
        await self._upsert(
            "ChatRecord",
            "id",
            record.id,
            {
                "session_id": record.session_id,
                "owner_id": record.owner_id,
                "created_at": record.created_at.isoformat(),
            },
            record,
        )

    async def list_chat_records(
        self, owner_id: str, session_id: str | None = None
    ) -> list[ChatRecord]:
        query = "MATCH (n:ChatRecord {owner_id: $owner_id}) "
        if session_id is not None:
            query += "WHERE n.session_id = $session_id "
        query += "RETURN n.payload AS payload ORDER BY n.created_at, n.id"
        payloads = await self._fetch_payloads(
            query, owner_id=owner_id, session_id=session_id
        )
        return [ChatRecord.model_validate_json(p) for p in payloads]

    async def delete_chat_records(self, session_id: str) -> int:
        return await self._delete_count(
            "MATCH (n:ChatRecord {session_id: $session_id}) "
            "DETACH DELETE n RETURN count(n) AS cnt",
            session_id=session_id,
        )

    # ----- role-play -----

    async def save_roleplay_session(self, session: RolePlaySession) -> None:
        await self._upsert(
            "RolePlaySession",
            "session_id",
            session.session_id,
            {
                "owner_id": session.owner_id,
                "character_id": session.character_id,
                "status": session.status.value,
            },
            session,
        )

    async def get_roleplay_session(self, session_id: str) -> RolePlaySession | None:
        record = await self._fetch_one(
            "MATCH (n:RolePlaySession {session_id: $session_id}) "
            "RETURN n.payload AS payload",
            session_id=session_id,
        )
        return _load(RolePlaySession, record)

    async def delete_roleplay_session(self, session_id: str) -> bool:
        deleted = await self._delete_count(
            "MATCH (n:RolePlaySession {session_id: $session_id}) "
            "DETACH DELETE n RETURN count(n) AS cnt",
            session_id=session_id,
        )
        return deleted > 0

    async def save_turn(self, turn: RolePlayTurnRecord) -> None:
        await self._upsert(
            "RolePlayTurn",
            "id",
            turn.id,
            {"session_id": turn.session_id, "turn_number": turn.turn_number},
            turn,
        )

    async def get_turn(self, turn_id: str) -> RolePlayTurnRecord | None:
        record = await self._fetch_one(
            "MATCH (n:RolePlayTurn {id: $id}) RETURN n.payload AS payload",
            id=turn_id,
        )
        return _load(RolePlayTurnRecord, record)

    async def list_turns(
        self, session_id: str, *, limit: int | None = None
    ) -> list[RolePlayTurnRecord]:
        """Return the latest *limit* turns (all when ``None``), oldest first."""
        query = (
            "MATCH (n:RolePlayTurn {session_id: $session_id}) "
            "RETURN n.payload AS payload, n.turn_number AS turn_number "
            "ORDER BY n.turn_number DESC"
        )
        if limit is not None:
            query += " LIMIT $limit"
        payloads = await self._fetch_payloads(
            query, session_id=session_id, limit=limit
        )
        return [RolePlayTurnRecord.model_validate_json(p) for p in reversed(payloads)]

    async def delete_turns(self, session_id: str) -> int:
        return await self._delete_count(
            "MATCH (n:RolePlayTurn {session_id: $session_id}) "
            "DETACH DELETE n RETURN count(n) AS cnt",
            session_id=session_id,
        )
