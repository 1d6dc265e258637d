"""Redis-backed conversational context manager.

Sessions are stored as JSON strings keyed by ``rolerag:session:{id}``
with an expiry equal to the configured TTL.  A set
``rolerag:owner:{owner}`` indexes the sessions of each owner so they
can be listed and swept once their payloads expire.

Every operation is best-effort: when the cache is disabled, unreachable
or holds a corrupt payload, the failure is logged and a default value is
returned.  Callers never see a cache error.
"""

from __future__ import annotations

import logging
import time
import uuid

from pydantic import ValidationError
from redis.asyncio import Redis  # type: ignore[import-untyped]
from redis.exceptions import RedisError  # type: ignore[import-untyped]

from rolerag.config import ConversationConfig
from rolerag.memory.schemas import ConversationSession
from rolerag.memory.schemas import ConversationTurn
from rolerag.memory.schemas import TurnRole

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Key prefixes
# ---------------------------------------------------------------------------

_PREFIX = "rolerag"
_SESSION_KEY = f"{_PREFIX}:session"
_OWNER_KEY = f"{_PREFIX}:owner"

_CACHE_ERRORS = (RedisError, OSError, ValidationError)

_USER_LABEL = "User"
_ASSISTANT_LABEL = "Assistant"


# ---------------------------------------------------------------------------
# Token estimate
# ---------------------------------------------------------------------------


def _is_cjk(char: str) -> bool:
    return "\u4e00" <= char <= "\u9fff"


def estimate_tokens(text: str) -> int:
    """Rough token count: CJK ideographs / 1.5 plus other characters / 4."""
    if not text:
        return 0
    cjk = sum(1 for char in text if _is_cjk(char))
    other = len(text) - cjk
    return int(cjk / 1.5 + other / 4)


def _decode(raw: bytes | str) -> str:
    return raw.decode() if isinstance(raw, bytes) else raw


# ---------------------------------------------------------------------------
# ConversationContextManager
# ---------------------------------------------------------------------------


class ConversationContextManager:
    """Bounded, TTL-scoped conversation state per session.

    Appends are read-modify-write without compare-and-set: two concurrent
    appends to the same session may lose one of the turns.
    """

    def __init__(
        self,
        redis: Redis | None,
        config: ConversationConfig | None = None,
    ) -> None:
        self._redis = redis
        self._config = config or ConversationConfig()

    @property
    def enabled(self) -> bool:
        return self._config.enabled and self._redis is not None

    @property
    def max_stored_turns(self) -> int:
        return self._config.max_conversation_turns * 2

    # -- write --

    async def create_session(
        self,
        owner_id: str,
        knowledge_base_id: str,
        *,
        character_id: str | None = None,
        session_id: str | None = None,
    ) -> str:
        """Create an empty session and return its id.

        A caller-chosen *session_id* lets another record (e.g. a role-play
        session) share its id with the cached window.  The id is returned
        even when the cache is unavailable, so the caller can still
        proceed without history.
        """
        session = ConversationSession(
            session_id=session_id or uuid.uuid4().hex,
            owner_id=owner_id,
            knowledge_base_id=knowledge_base_id,
            character_id=character_id,
        )
        if not self.enabled:
            return session.session_id
        try:
            await self._save(session)
        except _CACHE_ERRORS:
            logger.exception("Failed to create session for owner %s", owner_id)
        else:
            logger.info(
                "Created session %s for owner %s", session.session_id, owner_id
            )
        return session.session_id

    async def append_turn(self, session_id: str, turn: ConversationTurn) -> bool:
        """Append *turn* and refresh the session TTL.

        Returns ``False`` when the session does not exist (or expired) or
        the cache is unavailable.  Oldest turns are evicted once the
        window exceeds twice the configured conversation turns.
        """
        if not self.enabled:
            return False
        try:
            session = await self._load(session_id)
            if session is None:
                logger.warning("Session %s not found, turn dropped", session_id)
                return False
            turns = [*session.turns, turn]
            overflow = len(turns) - self.max_stored_turns
            if overflow > 0:
                turns = turns[overflow:]
            updated = session.model_copy(
                update={"turns": turns, "last_active_at": time.time()}
            )
            await self._save(updated)
        except _CACHE_ERRORS:
            logger.exception("Failed to append turn to session %s", session_id)
            return False
        return True

    async def add_user_turn(self, session_id: str, content: str) -> bool:
        return await self.append_turn(
            session_id, ConversationTurn(role=TurnRole.user, content=content)
        )

    async def add_assistant_turn(
        self,
        session_id: str,
        content: str,
        fragment_ids: list[str] | None = None,
    ) -> bool:
        return await self.append_turn(
            session_id,
            ConversationTurn(
                role=TurnRole.assistant,
                content=content,
                fragment_ids=list(fragment_ids or []),
            ),
        )

    async def delete_session(self, session_id: str) -> None:
        """Remove a session and its owner-index entry; idempotent."""
        if not self.enabled:
            return
        try:
            session = await self._load_or_none(session_id)
            pipe = self._redis.pipeline()
            pipe.delete(f"{_SESSION_KEY}:{session_id}")
            if session is not None:
                pipe.srem(f"{_OWNER_KEY}:{session.owner_id}", session_id)
            await pipe.execute()
        except _CACHE_ERRORS:
            logger.exception("Failed to delete session %s", session_id)

    async def cleanup_expired_sessions(self, owner_id: str) -> int:
        """Drop owner-index entries whose session payload has expired."""
        if not self.enabled:
            return 0
        owner_key = f"{_OWNER_KEY}:{owner_id}"
        try:
            ids = [_decode(raw) for raw in await self._redis.smembers(owner_key)]
            if not ids:
                return 0
            pipe = self._redis.pipeline()
            for sid in ids:
                pipe.exists(f"{_SESSION_KEY}:{sid}")
            alive = await pipe.execute()
            stale = [sid for sid, exists in zip(ids, alive) if not exists]
            if stale:
                await self._redis.srem(owner_key, *stale)
        except _CACHE_ERRORS:
            logger.exception("Failed to clean up sessions for owner %s", owner_id)
            return 0
        if stale:
            logger.info(
                "Removed %d expired session(s) for owner %s", len(stale), owner_id
            )
        return len(stale)

    # -- read --

    async def get_session(self, session_id: str) -> ConversationSession | None:
        """Return the session, or ``None`` if absent, expired or unreadable."""
        if not self.enabled:
            return None
        try:
            return await self._load(session_id)
        except _CACHE_ERRORS:
            logger.exception("Failed to read session %s", session_id)
            return None

    async def list_sessions(self, owner_id: str) -> list[str]:
        """Return the live session ids of *owner_id*, sorted."""
        if not self.enabled:
            return []
        try:
            ids = [
                _decode(raw)
                for raw in await self._redis.smembers(f"{_OWNER_KEY}:{owner_id}")
            ]
            if not ids:
                return []
            pipe = self._redis.pipeline()
            for sid in ids:
                pipe.exists(f"{_SESSION_KEY}:{sid}")
            alive = await pipe.execute()
        except _CACHE_ERRORS:
            logger.exception("Failed to list sessions for owner %s", owner_id)
            return []
        return sorted(sid for sid, exists in zip(ids, alive) if exists)

    async def render_history(
        self,
        session_id: str,
        *,
        assistant_label: str = _ASSISTANT_LABEL,
        max_tokens: int | None = None,
    ) -> str:
        """Render the recent exchanges as ``User: ...`` / ``<label>: ...`` lines.

        Returns an empty string when the session is absent.  With a token
        budget (argument or configured default), the oldest lines are
        dropped until the rendered history fits.
        """
        session = await self.get_session(session_id)
        if session is None or not session.turns:
            return ""

        lines = [
            f"{_USER_LABEL if turn.role is TurnRole.user else assistant_label}: "
            f"{turn.content}"
            for turn in session.turns[-self.max_stored_turns :]
        ]

        budget = max_tokens
        if budget is None:
            budget = self._config.max_history_tokens
        if budget is not None:
            while lines and estimate_tokens("\n".join(lines)) > budget:
                lines.pop(0)
        return "\n".join(lines)

    # -- internal --

    async def _load(self, session_id: str) -> ConversationSession | None:
        raw = await self._redis.get(f"{_SESSION_KEY}:{session_id}")
        if raw is None:
            return None
        return ConversationSession.model_validate_json(raw)

    async def _load_or_none(self, session_id: str) -> ConversationSession | None:
        try:
            return await self._load(session_id)
        except ValidationError:
            logger.warning("Discarding corrupt payload of session %s", session_id)
            return None

    async def _save(self, session: ConversationSession) -> None:
        ttl = self._config.ttl_seconds
        owner_key = f"{_OWNER_KEY}:{session.owner_id}"
        pipe = self._redis.pipeline()
        pipe.set(
            f"{_SESSION_KEY}:{session.session_id}",
            session.model_dump_json(),
            ex=ttl,
        )
        pipe.sadd(owner_key, session.session_id)
        pipe.expire(owner_key, ttl)
        await pipe.execute()
