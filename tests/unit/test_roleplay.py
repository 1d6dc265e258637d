"""Unit tests for role-play sessions and turns."""

from __future__ import annotations

import pytest

from rolerag.chat.roleplay import FRAGMENT_PREVIEW_CHARS
from rolerag.chat.roleplay import RolePlayService
from rolerag.chat.roleplay import confused_reply
from rolerag.chat.schemas import RolePlaySessionStatus
from rolerag.config import RolePlayConfig
from rolerag.engine.hybrid import HybridRetrievalEngine
from rolerag.engine.schemas import RetrievalCandidate
from rolerag.engine.search import SimilaritySearchAdapter
from rolerag.errors import CharacterNotFoundError
from rolerag.errors import CharacterStateError
from rolerag.errors import ProfileNotReadyError
from rolerag.errors import RecordNotFoundError
from rolerag.errors import SessionNotFoundError
from rolerag.errors import SessionStateError
from rolerag.memory.store import ConversationContextManager
from rolerag.profile.schemas import Character
from rolerag.profile.schemas import CharacterProfile
from rolerag.profile.schemas import CharacterStatus
from rolerag.profile.schemas import FieldValue
from rolerag.profile.schemas import ProfileField
from rolerag.profile.schemas import ProfileStatus


@pytest.fixture()
def context(fake_redis) -> ConversationContextManager:
    return ConversationContextManager(fake_redis)


@pytest.fixture()
def make_service(record_store, search_backend, embedder, llm, context):
    def _make(config: RolePlayConfig | None = None) -> RolePlayService:
        retrieval = HybridRetrievalEngine(
            SimilaritySearchAdapter(search_backend), embedder
        )
        return RolePlayService(record_store, retrieval, llm, context, config=config)

    return _make


@pytest.fixture()
def service(make_service) -> RolePlayService:
    return make_service()


def _add_character(
    record_store,
    *,
    status: CharacterStatus = CharacterStatus.active,
    profile_status: ProfileStatus | None = ProfileStatus.completed,
) -> Character:
    character = Character(
        owner_id="u1",
        knowledge_base_id="kb1",
        name="Ada",
        description="A mathematician",
        status=status,
    )
    record_store.characters[character.id] = character
    if profile_status is not None:
        texts = {
            ProfileField.system_prompt: "You are Ada.",
            ProfileField.personality: "Curious",
            ProfileField.background: "Raised in London",
        }
        record_store.profiles[character.id] = CharacterProfile(
            character_id=character.id,
            fields={field: FieldValue(text=text) for field, text in texts.items()},
            status=profile_status,
        )
    return character


@pytest.fixture()
def character(record_store) -> Character:
    return _add_character(record_store)


@pytest.fixture()
async def session(service, character):
    return await service.create_session("u1", character.id)


class TestCreateSession:
    async def test_defaults(self, service, character, context, record_store):
        session = await service.create_session("u1", character.id)
        assert session.session_id.startswith("rp_")
        assert session.name == "Conversation with Ada"
        assert session.status is RolePlaySessionStatus.active
        assert session.message_count == 0
        assert session.settings.max_history_length == 20
        assert session.settings.use_rag is True
        assert record_store.sessions[session.session_id] == session

        cached = await context.get_session(session.session_id)
        assert cached.character_id == character.id
        assert cached.knowledge_base_id == "kb1"

    async def test_custom_name(self, service, character):
        session = await service.create_session("u1", character.id, "Evening chat")
        assert session.name == "Evening chat"

    async def test_inactive_character_rejected(self, service, record_store):
        character = _add_character(record_store, status=CharacterStatus.draft)
        with pytest.raises(CharacterStateError):
            await service.create_session("u1", character.id)

    async def test_incomplete_profile_rejected(self, service, record_store):
        character = _add_character(record_store, profile_status=None)
        with pytest.raises(ProfileNotReadyError):
            await service.create_session("u1", character.id)

    async def test_foreign_character_rejected(self, service, character):
        with pytest.raises(CharacterNotFoundError):
            await service.create_session("u2", character.id)


class TestSendMessage:
    async def test_first_turn(self, service, session, record_store):
        turn = await service.send_message("u1", session.session_id, "Hello")
        assert turn.turn_number == 1
        assert turn.user_message == "Hello"
        assert turn.character_response == "generated text"
        assert turn.system_prompt_used == "You are Ada."
        assert turn.used_rag is True
        assert [f.id for f in turn.fragments] == ["c1", "c2", "c3"]
        usage = turn.token_usage
        assert usage.prompt_tokens > 0
        assert usage.completion_tokens > 0
        assert usage.total_tokens == usage.prompt_tokens + usage.completion_tokens
        assert record_store.turns[turn.id] == turn
        assert record_store.sessions[session.session_id].message_count == 1

    async def test_turn_numbers_increase(self, service, session):
        first = await service.send_message("u1", session.session_id, "Hello")
        second = await service.send_message("u1", session.session_id, "Again")
        assert (first.turn_number, second.turn_number) == (1, 2)

    async def test_prompt_carries_profile_and_history(self, service, session, llm):
        await service.send_message("u1", session.session_id, "Hello")
        await service.send_message("u1", session.session_id, "Tell me more")
        first, second = llm.prompts
        assert first.startswith("# Character\nYou are Ada.\n")
        assert "## Personality\nCurious" in first
        assert "Character background:\nRaised in London" in first
        assert "Conversation history:" not in first
        assert "Conversation history:\nUser: Hello\nAda: generated text" in second
        assert "Current user message:\nTell me more" in second

    async def test_fragment_previews_are_trimmed(self, service, session, search_backend):
        search_backend.vector = [RetrievalCandidate(id="long", content="x" * 250)]
        turn = await service.send_message("u1", session.session_id, "Hello")
        assert turn.fragments[0].content == "x" * FRAGMENT_PREVIEW_CHARS + "..."

    async def test_query_includes_recent_user_messages(
        self, service, session, embedder
    ):
        for message in ("m1", "m2", "m3", "m4", "m5"):
            await service.send_message("u1", session.session_id, message)
        assert embedder.texts[0] == "m1"
        assert embedder.texts[1] == "m2 m1"
        assert embedder.texts[-1] == "m5 m2 m3 m4"

    async def test_rag_can_be_disabled(self, make_service, character, embedder):
        service = make_service(RolePlayConfig(use_rag=False))
        session = await service.create_session("u1", character.id)
        turn = await service.send_message("u1", session.session_id, "Hello")
        assert embedder.texts == []
        assert turn.used_rag is False
        assert turn.fragments == []

    async def test_retrieval_failure_continues_without_fragments(
        self, service, session, search_backend
    ):
        search_backend.vector_error = RuntimeError("index offline")
        turn = await service.send_message("u1", session.session_id, "Hello")
        assert turn.used_rag is False
        assert turn.character_response == "generated text"

    async def test_model_failure_gives_confused_reply(self, service, session, llm):
        llm.fail = True
        turn = await service.send_message("u1", session.session_id, "Hello")
        assert turn.character_response == confused_reply("Ada")

    async def test_blank_reply_gives_confused_reply(self, service, session, llm):
        llm.responder = lambda prompt: "   "
        turn = await service.send_message("u1", session.session_id, "Hello")
        assert turn.character_response == confused_reply("Ada")

    async def test_storage_failure_still_returns_turn(
        self, service, session, record_store, context
    ):
        record_store.fail_turn_writes = True
        turn = await service.send_message("u1", session.session_id, "Hello")
        assert turn.character_response == "generated text"
        assert record_store.turns == {}
        assert record_store.sessions[session.session_id].message_count == 0
        cached = await context.get_session(session.session_id)
        assert [t.content for t in cached.turns] == ["Hello", "generated text"]

    async def test_history_falls_back_to_persisted_turns(
        self, service, session, llm, embedder, fake_redis
    ):
        await service.send_message("u1", session.session_id, "Hello")
        fake_redis.expire_now("rolerag:session:*")
        await service.send_message("u1", session.session_id, "Again")
        assert "Conversation history:\nUser: Hello\nAda: generated text" in llm.prompts[1]
        assert embedder.texts[-1] == "Again Hello"

    async def test_blank_message_rejected(self, service, session):
        with pytest.raises(ValueError):
            await service.send_message("u1", session.session_id, "   ")

    async def test_missing_session(self, service):
        with pytest.raises(SessionNotFoundError):
            await service.send_message("u1", "rp_missing", "Hello")

    async def test_foreign_session(self, service, session):
        with pytest.raises(SessionNotFoundError):
            await service.send_message("u2", session.session_id, "Hello")

    async def test_ended_session_rejects_messages(self, service, session):
        await service.end_session("u1", session.session_id)
        with pytest.raises(SessionStateError):
            await service.send_message("u1", session.session_id, "Hello")


class TestRateTurn:
    async def test_out_of_range_rating_rejected(self, service, session, record_store):
        turn = await service.send_message("u1", session.session_id, "Hello")
        with pytest.raises(ValueError, match="between 1 and 5"):
            await service.rate_turn("u1", turn.id, 6)
        assert record_store.turns[turn.id].rating is None

    async def test_foreign_turn_not_found(self, service, session):
        turn = await service.send_message("u1", session.session_id, "Hello")
        with pytest.raises(RecordNotFoundError):
            await service.rate_turn("u2", turn.id, 4)

    async def test_rating_is_persisted(self, service, session, record_store):
        turn = await service.send_message("u1", session.session_id, "Hello")
        rated = await service.rate_turn("u1", turn.id, 4, "nice")
        assert (rated.rating, rated.feedback) == (4, "nice")
        assert record_store.turns[turn.id].rating == 4


class TestSessionLifecycle:
    async def test_end_is_idempotent(self, service, session, context):
        ended = await service.end_session("u1", session.session_id)
        again = await service.end_session("u1", session.session_id)
        assert ended.status is RolePlaySessionStatus.ended
        assert again.status is RolePlaySessionStatus.ended
        assert await context.get_session(session.session_id) is None

    async def test_delete_removes_turns(self, service, session, record_store):
        await service.send_message("u1", session.session_id, "Hello")
        await service.send_message("u1", session.session_id, "Again")
        assert await service.delete_session("u1", session.session_id) == 2
        assert record_store.turns == {}
        with pytest.raises(SessionNotFoundError):
            await service.get_session("u1", session.session_id)

    async def test_history_is_ordered_and_limited(self, service, session):
        for message in ("one", "two", "three"):
            await service.send_message("u1", session.session_id, message)
        history = await service.session_history("u1", session.session_id)
        assert [t.user_message for t in history] == ["one", "two", "three"]
        latest = await service.session_history("u1", session.session_id, limit=2)
        assert [t.turn_number for t in latest] == [2, 3]

    async def test_history_of_foreign_session(self, service, session):
        with pytest.raises(SessionNotFoundError):
            await service.session_history("u2", session.session_id)
