"""Role-play conversations with an activated character."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from datetime import timezone
from time import perf_counter

from rolerag.chat.schemas import FragmentSummary
from rolerag.chat.schemas import RolePlaySession
from rolerag.chat.schemas import RolePlaySessionSettings
from rolerag.chat.schemas import RolePlaySessionStatus
from rolerag.chat.schemas import RolePlayTurnRecord
from rolerag.chat.schemas import TokenUsage
from rolerag.config import RolePlayConfig
from rolerag.engine.hybrid import HybridRetrievalEngine
from rolerag.engine.llm_adapters import LLMAdapter
from rolerag.engine.prompt_builder import build_roleplay_context
from rolerag.engine.prompt_builder import build_roleplay_prompt
from rolerag.engine.schemas import RetrievalCandidate
from rolerag.errors import CharacterNotFoundError
from rolerag.errors import CharacterStateError
from rolerag.errors import ProfileNotReadyError
from rolerag.errors import RecordNotFoundError
from rolerag.errors import SessionNotFoundError
from rolerag.errors import SessionStateError
from rolerag.memory.schemas import TurnRole
from rolerag.memory.store import ConversationContextManager
from rolerag.memory.store import estimate_tokens
from rolerag.observability import track_latency
from rolerag.profile.schemas import Character
from rolerag.profile.schemas import CharacterProfile
from rolerag.profile.schemas import CharacterStatus
from rolerag.profile.schemas import ProfileField
from rolerag.profile.schemas import ProfileStatus
from rolerag.store.protocols import RecordStore

logger = logging.getLogger(__name__)

FRAGMENT_PREVIEW_CHARS = 200


def confused_reply(character_name: str) -> str:
    return (
        f"[{character_name}] Sorry, I'm a little confused right now. "
        "Could you ask me another way?"
    )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RolePlayService:
    """Runs turn-by-turn conversations in a character's voice.

    Each turn retrieves knowledge-base fragments relevant to the message
    and the recent user messages, prompts the model with the character's
    profile, and persists the exchange as a numbered turn record.  Model
    and retrieval failures degrade to an in-character apology.
    """

    def __init__(
        self,
        store: RecordStore,
        retrieval: HybridRetrievalEngine,
        llm: LLMAdapter,
        context: ConversationContextManager,
        *,
        config: RolePlayConfig | None = None,
        timeout_seconds: float = 60.0,
    ) -> None:
        self._store = store
        self._retrieval = retrieval
        self._llm = llm
        self._context = context
        self._config = config or RolePlayConfig()
        self._timeout_seconds = timeout_seconds

    # -- sessions --

    async def create_session(
        self, owner_id: str, character_id: str, name: str | None = None
    ) -> RolePlaySession:
        """Open a session with an ACTIVE character whose profile is completed."""
        character = await self._character(owner_id, character_id)
        if character.status is not CharacterStatus.active:
            raise CharacterStateError(
                f"Character {character_id} is not active "
                f"(status={character.status.value})"
            )
        await self._completed_profile(character_id)

        session = RolePlaySession(
            session_id=f"rp_{uuid.uuid4().hex}",
            owner_id=owner_id,
            character_id=character_id,
            name=name or f"Conversation with {character.name}",
            settings=RolePlaySessionSettings(
                max_history_length=self._config.max_history_length,
                use_rag=self._config.use_rag,
                temperature=self._config.temperature,
                max_tokens=self._config.max_tokens,
            ),
        )
        await self._store.save_roleplay_session(session)
        await self._context.create_session(
            owner_id,
            character.knowledge_base_id,
            character_id=character_id,
            session_id=session.session_id,
        )
        logger.info(
            "Created role-play session %s with character %s",
            session.session_id,
            character_id,
        )
        return session

    async def get_session(self, owner_id: str, session_id: str) -> RolePlaySession:
        session = await self._store.get_roleplay_session(session_id)
        if session is None or session.owner_id != owner_id:
            raise SessionNotFoundError(f"Role-play session {session_id} not found")
        return session

    async def end_session(self, owner_id: str, session_id: str) -> RolePlaySession:
        session = await self.get_session(owner_id, session_id)
        if session.status is RolePlaySessionStatus.ended:
            return session
        ended = session.model_copy(
            update={
                "status": RolePlaySessionStatus.ended,
                "last_activity_at": _utcnow(),
            }
        )
        await self._store.save_roleplay_session(ended)
        await self._context.delete_session(session_id)
        logger.info("Ended role-play session %s", session_id)
        return ended

    async def delete_session(self, owner_id: str, session_id: str) -> int:
        """Delete a session with all its turns; returns the turns removed."""
        await self.get_session(owner_id, session_id)
        removed = await self._store.delete_turns(session_id)
        await self._store.delete_roleplay_session(session_id)
        await self._context.delete_session(session_id)
        logger.info(
            "Deleted role-play session %s (%d turn(s))", session_id, removed
        )
        return removed

    async def session_history(
        self, owner_id: str, session_id: str, *, limit: int | None = None
    ) -> list[RolePlayTurnRecord]:
        await self.get_session(owner_id, session_id)
        return await self._store.list_turns(session_id, limit=limit)

    # -- turns --

    async def send_message(
        self, owner_id: str, session_id: str, message: str
    ) -> RolePlayTurnRecord:
        if not message.strip():
            raise ValueError("message must not be blank")

        async with track_latency("roleplay.send_message"):
            session = await self.get_session(owner_id, session_id)
            if session.status is not RolePlaySessionStatus.active:
                raise SessionStateError(f"Role-play session {session_id} has ended")
            character = await self._character(owner_id, session.character_id)
            profile = await self._completed_profile(session.character_id)

            recent = await self._store.list_turns(
                session_id, limit=self._config.history_turns_in_prompt
            )
            history, recent_messages = await self._history(
                session_id, recent, character.name
            )

            fragments: list[RetrievalCandidate] = []
            if session.settings.use_rag:
                fragments = await self._retrieve(
                    message, recent_messages, character.knowledge_base_id
                )

            context = build_roleplay_context(
                character_name=character.name,
                system_prompt=profile.system_prompt,
                user_message=message,
                background=profile.text(ProfileField.background),
                speaking_style=profile.text(ProfileField.speaking_style),
                fragments=fragments,
                history=history,
            )
            prompt = build_roleplay_prompt(
                context,
                system_prompt=profile.system_prompt,
                personality=profile.text(ProfileField.personality),
                speaking_style=profile.text(ProfileField.speaking_style),
                background=profile.text(ProfileField.background),
                restrictions=profile.text(ProfileField.restrictions),
            )

            start = perf_counter()
            reply = await self._reply(prompt, session, character.name)
            elapsed_ms = int((perf_counter() - start) * 1000)

            prompt_tokens = estimate_tokens(prompt)
            completion_tokens = estimate_tokens(reply)
            turn = RolePlayTurnRecord(
                session_id=session_id,
                owner_id=owner_id,
                character_id=character.id,
                turn_number=(recent[-1].turn_number if recent else 0) + 1,
                user_message=message,
                character_response=reply,
                system_prompt_used=profile.system_prompt,
                used_rag=bool(fragments),
                fragments=[
                    FragmentSummary.from_candidate(
                        fragment, max_chars=FRAGMENT_PREVIEW_CHARS
                    )
                    for fragment in fragments
                ],
                token_usage=TokenUsage(
                    prompt_tokens=prompt_tokens,
                    completion_tokens=completion_tokens,
                    total_tokens=prompt_tokens + completion_tokens,
                ),
                response_time_ms=elapsed_ms,
            )
            await self._record(session, turn, [fragment.id for fragment in fragments])
            logger.info(
                "Role-play turn %d in session %s (fragments=%d)",
                turn.turn_number,
                session_id,
                len(fragments),
            )
            return turn

    async def rate_turn(
        self,
        owner_id: str,
        turn_id: str,
        rating: int,
        feedback: str | None = None,
    ) -> RolePlayTurnRecord:
        if not 1 <= rating <= 5:
            raise ValueError(f"rating must be between 1 and 5, got {rating}")
        turn = await self._store.get_turn(turn_id)
        if turn is None or turn.owner_id != owner_id:
            raise RecordNotFoundError(f"Turn {turn_id} not found")
        rated = turn.model_copy(update={"rating": rating, "feedback": feedback})
        await self._store.save_turn(rated)
        return rated

    # -- internal --

    async def _character(self, owner_id: str, character_id: str) -> Character:
        character = await self._store.get_character(character_id)
        if character is None or character.owner_id != owner_id:
            raise CharacterNotFoundError(f"Character {character_id} not found")
        return character

    async def _completed_profile(self, character_id: str) -> CharacterProfile:
        profile = await self._store.get_profile(character_id)
        if profile is None or profile.status is not ProfileStatus.completed:
            raise ProfileNotReadyError(
                f"Profile of character {character_id} is not completed"
            )
        return profile

    async def _history(
        self,
        session_id: str,
        recent: list[RolePlayTurnRecord],
        character_name: str,
    ) -> tuple[str, list[str]]:
        """Return the rendered history and the recent user messages.

        The cached session window is preferred; once it has expired the
        persisted turns stand in for it.
        """
        cached = await self._context.get_session(session_id)
        if cached is not None and cached.turns:
            history = await self._context.render_history(
                session_id, assistant_label=character_name
            )
            messages = [t.content for t in cached.turns if t.role is TurnRole.user]
            return history, messages

        lines: list[str] = []
        for turn in recent:
            lines.append(f"User: {turn.user_message}")
            lines.append(f"{character_name}: {turn.character_response}")
        return "\n".join(lines), [turn.user_message for turn in recent]

    async def _record(
        self,
        session: RolePlaySession,
        turn: RolePlayTurnRecord,
        fragment_ids: list[str],
    ) -> None:
        """Write the turn to the session window and the permanent store.

        The reply has already been generated, so storage failures are
        logged and the turn is still returned to the caller.
        """
        await self._context.add_user_turn(session.session_id, turn.user_message)
        await self._context.add_assistant_turn(
            session.session_id, turn.character_response, fragment_ids
        )
        try:
            await self._store.save_turn(turn)
            await self._store.save_roleplay_session(
                session.model_copy(
                    update={
                        "message_count": session.message_count + 1,
                        "last_activity_at": _utcnow(),
                    }
                )
            )
        except Exception:
            logger.exception(
                "Failed to persist role-play turn %d for session %s",
                turn.turn_number,
                session.session_id,
            )

    async def _retrieve(
        self, message: str, recent_messages: list[str], knowledge_base_id: str
    ) -> list[RetrievalCandidate]:
        window = self._config.query_history_messages
        query_parts = [message]
        if window:
            query_parts.extend(recent_messages[-window:])
        try:
            results = await self._retrieval.hybrid_search(
                " ".join(query_parts), knowledge_base_id
            )
        except Exception:
            logger.exception(
                "Role-play retrieval failed for knowledge base %s", knowledge_base_id
            )
            return []
        return results[: self._config.fragments_per_turn]

    async def _reply(
        self, prompt: str, session: RolePlaySession, character_name: str
    ) -> str:
        try:
            reply = await self._llm.complete(
                prompt,
                temperature=session.settings.temperature,
                max_tokens=session.settings.max_tokens,
                timeout_seconds=self._timeout_seconds,
            )
        except Exception:
            logger.exception(
                "Role-play model call failed in session %s", session.session_id
            )
            return confused_reply(character_name)
        if not reply.strip():
            logger.warning("Empty role-play reply in session %s", session.session_id)
            return confused_reply(character_name)
        return reply.strip()
