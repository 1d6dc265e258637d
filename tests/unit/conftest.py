"""Unit test fixtures: in-process fakes for Redis, persistence, search and models."""

from __future__ import annotations

import fnmatch
from collections.abc import Callable
from collections.abc import Sequence

import pytest

from rolerag.chat.schemas import ChatRecord
from rolerag.chat.schemas import RolePlaySession
from rolerag.chat.schemas import RolePlayTurnRecord
from rolerag.engine.schemas import RetrievalCandidate
from rolerag.errors import LLMError
from rolerag.profile.schemas import Character
from rolerag.profile.schemas import CharacterProfile

# ---------------------------------------------------------------------------
# Redis
# ---------------------------------------------------------------------------


class FakeRedis:
    """The subset of ``redis.asyncio.Redis`` used by the context manager.

    Expiry is recorded but never enforced; tests call ``expire_now`` to
    simulate a payload running out of TTL.
    """

    def __init__(self) -> None:
        self.values: dict[str, str] = {}
        self.sets: dict[str, set[str]] = {}
        self.ttls: dict[str, int] = {}
        self.fail = False

    def _check(self) -> None:
        if self.fail:
            raise ConnectionError("redis unavailable")

    async def get(self, key: str) -> bytes | None:
        self._check()
        value = self.values.get(key)
        return value.encode() if value is not None else None

    async def set(self, key: str, value: str, ex: int | None = None) -> bool:
        self._check()
        self.values[key] = value
        if ex is not None:
            self.ttls[key] = ex
        return True

    async def delete(self, *keys: str) -> int:
        self._check()
        removed = 0
        for key in keys:
            removed += int(self.values.pop(key, None) is not None)
            removed += int(self.sets.pop(key, None) is not None)
        return removed

    async def exists(self, key: str) -> int:
        self._check()
        return int(key in self.values or key in self.sets)

    async def sadd(self, key: str, *members: str) -> int:
        self._check()
        bucket = self.sets.setdefault(key, set())
        before = len(bucket)
        bucket.update(members)
        return len(bucket) - before

    async def srem(self, key: str, *members: str) -> int:
        self._check()
        bucket = self.sets.get(key, set())
        removed = len(bucket & set(members))
        bucket.difference_update(members)
        return removed

    async def smembers(self, key: str) -> set[bytes]:
        self._check()
        return {member.encode() for member in self.sets.get(key, set())}

    async def expire(self, key: str, seconds: int) -> bool:
        self._check()
        self.ttls[key] = seconds
        return True

    def pipeline(self) -> FakePipeline:
        return FakePipeline(self)

    def expire_now(self, pattern: str) -> None:
        for key in [k for k in self.values if fnmatch.fnmatch(k, pattern)]:
            del self.values[key]


class FakePipeline:
    def __init__(self, redis: FakeRedis) -> None:
        self._redis = redis
        self._calls: list[tuple[str, tuple, dict]] = []

    def __getattr__(self, name: str) -> Callable[..., FakePipeline]:
        def _queue(*args, **kwargs) -> FakePipeline:
            self._calls.append((name, args, kwargs))
            return self

        return _queue

    async def execute(self) -> list:
        results = []
        for name, args, kwargs in self._calls:
            results.append(await getattr(self._redis, name)(*args, **kwargs))
        self._calls.clear()
        return results


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


class InMemoryRecordStore:
    """Dict-backed ``RecordStore``."""

    def __init__(self) -> None:
        self.characters: dict[str, Character] = {}
        self.profiles: dict[str, CharacterProfile] = {}
        self.profile_history: list[CharacterProfile] = []
        self.chat_records: list[ChatRecord] = []
        self.sessions: dict[str, RolePlaySession] = {}
        self.turns: dict[str, RolePlayTurnRecord] = {}
        self.fail_chat_records = False
        self.fail_turn_writes = False
        self.fail_session_reads = False

    async def save_character(self, character: Character) -> None:
        self.characters[character.id] = character

    async def get_character(self, character_id: str) -> Character | None:
        return self.characters.get(character_id)

    async def find_character_by_name(
        self, owner_id: str, name: str
    ) -> Character | None:
        for character in self.characters.values():
            if character.owner_id == owner_id and character.name == name:
                return character
        return None

    async def list_characters(self, owner_id: str) -> list[Character]:
        return sorted(
            (c for c in self.characters.values() if c.owner_id == owner_id),
            key=lambda c: (c.name, c.id),
        )

    async def delete_character(self, character_id: str) -> bool:
        self.profiles.pop(character_id, None)
        return self.characters.pop(character_id, None) is not None

    async def save_profile(self, profile: CharacterProfile) -> None:
        self.profiles[profile.character_id] = profile
        self.profile_history.append(profile)

    async def get_profile(self, character_id: str) -> CharacterProfile | None:
        return self.profiles.get(character_id)

    async def save_chat_record(self, record: ChatRecord) -> None:
        if self.fail_chat_records:
            raise RuntimeError("database unavailable")
        self.chat_records.append(record)

    async def list_chat_records(
        self, owner_id: str, session_id: str | None = None
    ) -> list[ChatRecord]:
        return [
            r
            for r in self.chat_records
            if r.owner_id == owner_id
            and (session_id is None or r.session_id == session_id)
        ]

    async def delete_chat_records(self, session_id: str) -> int:
        kept = [r for r in self.chat_records if r.session_id != session_id]
        removed = len(self.chat_records) - len(kept)
        self.chat_records = kept
        return removed

    async def save_roleplay_session(self, session: RolePlaySession) -> None:
        self.sessions[session.session_id] = session

    async def get_roleplay_session(self, session_id: str) -> RolePlaySession | None:
        if self.fail_session_reads:
            raise RuntimeError("connection refused to bolt://db:7687")
        return self.sessions.get(session_id)

    async def delete_roleplay_session(self, session_id: str) -> bool:
        return self.sessions.pop(session_id, None) is not None

    async def save_turn(self, turn: RolePlayTurnRecord) -> None:
        if self.fail_turn_writes:
            raise RuntimeError("connection refused to bolt://db:7687")
        self.turns[turn.id] = turn

    async def get_turn(self, turn_id: str) -> RolePlayTurnRecord | None:
        return self.turns.get(turn_id)

    async def list_turns(
        self, session_id: str, *, limit: int | None = None
    ) -> list[RolePlayTurnRecord]:
        turns = sorted(
            (t for t in self.turns.values() if t.session_id == session_id),
            key=lambda t: t.turn_number,
        )
        return turns if limit is None else turns[-limit:]

    async def delete_turns(self, session_id: str) -> int:
        doomed = [tid for tid, t in self.turns.items() if t.session_id == session_id]
        for tid in doomed:
            del self.turns[tid]
        return len(doomed)


# ---------------------------------------------------------------------------
# Search and models
# ---------------------------------------------------------------------------


def _chunk(
    chunk_id: str, content: str | None = None, position: int | None = None
) -> RetrievalCandidate:
    return RetrievalCandidate(
        id=chunk_id,
        content=content if content is not None else f"content of {chunk_id}",
        chunk_position=position,
    )


class FakeSearchBackend:
    """Returns fixed candidate lists and records every call."""

    def __init__(
        self,
        vector: Sequence[RetrievalCandidate] = (),
        keyword: Sequence[RetrievalCandidate] = (),
    ) -> None:
        self.vector = list(vector)
        self.keyword = list(keyword)
        self.vector_error: Exception | None = None
        self.keyword_error: Exception | None = None
        self.vector_calls: list[tuple[list[float], str, int]] = []
        self.keyword_calls: list[tuple[str, str, int]] = []

    async def vector_search(
        self, query_vector: Sequence[float], partition_key: str, limit: int
    ) -> list[RetrievalCandidate]:
        self.vector_calls.append((list(query_vector), partition_key, limit))
        if self.vector_error is not None:
            raise self.vector_error
        return self.vector[:limit]

    async def keyword_search(
        self, query_text: str, partition_key: str, limit: int
    ) -> list[RetrievalCandidate]:
        self.keyword_calls.append((query_text, partition_key, limit))
        if self.keyword_error is not None:
            raise self.keyword_error
        return self.keyword[:limit]


class FakeEmbedder:
    def __init__(self) -> None:
        self.texts: list[str] = []
        self.fail = False

    async def embed(self, text: str) -> list[float]:
        self.texts.append(text)
        if self.fail:
            raise LLMError("embedding unavailable")
        return [0.1, 0.2, 0.3, 0.4]


class ScriptedLLM:
    """Completion adapter driven by a responder callable.

    The default responder echoes a short deterministic reply.  Setting
    ``fail`` makes every call raise ``LLMError``; ``fail_when`` fails only
    the prompts containing the given text.
    """

    def __init__(self, responder: Callable[[str], str] | None = None) -> None:
        self.responder = responder or (lambda prompt: "generated text")
        self.prompts: list[str] = []
        self.calls: list[dict] = []
        self.fail = False
        self.fail_when: str | None = None

    async def complete(
        self,
        prompt: str,
        *,
        temperature: float = 0.7,
        max_tokens: int = 1000,
        timeout_seconds: float = 60.0,
    ) -> str:
        self.prompts.append(prompt)
        self.calls.append(
            {
                "temperature": temperature,
                "max_tokens": max_tokens,
                "timeout_seconds": timeout_seconds,
            }
        )
        if self.fail or (self.fail_when is not None and self.fail_when in prompt):
            raise LLMError("model unavailable")
        return self.responder(prompt)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture()
def record_store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture()
def search_backend() -> FakeSearchBackend:
    return FakeSearchBackend(
        vector=[
            _chunk("c1", "Ada Lovelace wrote the first published algorithm", 0),
            _chunk("c2", "She worked with Charles Babbage on the Analytical Engine", 1),
            _chunk("c3", "Ada loved poetry and mathematics in equal measure", 2),
        ],
        keyword=[
            _chunk("c2", "She worked with Charles Babbage on the Analytical Engine", 1),
            _chunk("c4", "Her notes describe loops and subroutines", 3),
        ],
    )


@pytest.fixture()
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture()
def llm() -> ScriptedLLM:
    return ScriptedLLM()
