"""Unit tests for character lifecycle management."""

from __future__ import annotations

import pytest

from rolerag.engine.hybrid import HybridRetrievalEngine
from rolerag.engine.search import SimilaritySearchAdapter
from rolerag.errors import CharacterNotFoundError
from rolerag.errors import ProfileGenerationInProgressError
from rolerag.errors import ProfileNotReadyError
from rolerag.profile.characters import CharacterService
from rolerag.profile.generation import GENERATING_PLACEHOLDER
from rolerag.profile.generation import ProfileGenerator
from rolerag.profile.schemas import CharacterProfile
from rolerag.profile.schemas import CharacterStatus
from rolerag.profile.schemas import FieldValue
from rolerag.profile.schemas import ProfileField
from rolerag.profile.schemas import ProfileStatus


@pytest.fixture()
def generator(record_store, search_backend, embedder, llm) -> ProfileGenerator:
    retrieval = HybridRetrievalEngine(SimilaritySearchAdapter(search_backend), embedder)
    return ProfileGenerator(record_store, retrieval, llm)


@pytest.fixture()
def service(record_store, generator) -> CharacterService:
    return CharacterService(record_store, generator)


async def _create(service: CharacterService, name: str = "Ada", owner: str = "u1"):
    return await service.create_character(
        owner, "kb1", name, "A mathematician", generate_profile=False
    )


class TestCreateCharacter:
    async def test_creates_draft(self, service, record_store):
        character = await _create(service)
        assert character.status is CharacterStatus.draft
        assert character.id.startswith("char_")
        assert record_store.characters[character.id] == character

    async def test_duplicate_name_for_owner_rejected(self, service):
        await _create(service)
        with pytest.raises(ValueError, match="already exists"):
            await _create(service)

    async def test_same_name_allowed_for_other_owner(self, service):
        await _create(service)
        other = await _create(service, owner="u2")
        assert other.owner_id == "u2"

    async def test_dispatches_profile_generation(self, service, generator):
        character = await service.create_character("u1", "kb1", "Ada", "A mathematician")
        task = generator.start_generation(character)
        profile = await task
        assert profile.status is ProfileStatus.completed
        assert profile.version == 1


class TestOwnership:
    async def test_foreign_character_is_not_found(self, service):
        character = await _create(service)
        with pytest.raises(CharacterNotFoundError):
            await service.get_character("u2", character.id)

    async def test_missing_character_is_not_found(self, service):
        with pytest.raises(CharacterNotFoundError):
            await service.get_character("u1", "char_missing")

    async def test_list_filters_by_status(self, service, record_store):
        ada = await _create(service, "Ada")
        await _create(service, "Babbage")
        await service.deactivate_character("u1", ada.id)
        inactive = await service.list_characters("u1", status=CharacterStatus.inactive)
        assert [c.name for c in inactive] == ["Ada"]
        assert [c.name for c in await service.list_characters("u1")] == [
            "Ada",
            "Babbage",
        ]


class TestActivation:
    async def test_requires_profile(self, service):
        character = await _create(service)
        with pytest.raises(ProfileNotReadyError):
            await service.activate_character("u1", character.id)

    async def test_rejects_generating_profile(self, service, record_store):
        character = await _create(service)
        record_store.profiles[character.id] = CharacterProfile(
            character_id=character.id,
            fields={ProfileField.system_prompt: FieldValue(text=GENERATING_PLACEHOLDER)},
            status=ProfileStatus.generating,
        )
        with pytest.raises(ProfileGenerationInProgressError):
            await service.activate_character("u1", character.id)

    async def test_rejects_failed_profile(self, service, record_store):
        character = await _create(service)
        record_store.profiles[character.id] = CharacterProfile(
            character_id=character.id,
            fields={ProfileField.system_prompt: FieldValue(text="failed")},
            status=ProfileStatus.failed,
        )
        with pytest.raises(ProfileNotReadyError):
            await service.activate_character("u1", character.id)

    async def test_activates_with_completed_profile(self, service, generator):
        character = await _create(service)
        await generator.generate_profile(character)
        active = await service.activate_character("u1", character.id)
        assert active.status is CharacterStatus.active
        assert active.updated_at >= character.updated_at


class TestUpdateAndDelete:
    async def test_rename_conflict(self, service):
        ada = await _create(service, "Ada")
        await _create(service, "Babbage")
        with pytest.raises(ValueError, match="already exists"):
            await service.update_character("u1", ada.id, name="Babbage")

    async def test_update_fields(self, service):
        ada = await _create(service)
        updated = await service.update_character(
            "u1", ada.id, name="Countess", description="Poet", is_public=True
        )
        assert (updated.name, updated.description, updated.is_public) == (
            "Countess",
            "Poet",
            True,
        )

    async def test_update_revalidates(self, service):
        ada = await _create(service)
        with pytest.raises(ValueError):
            await service.update_character("u1", ada.id, description="x" * 501)

    async def test_delete_removes_profile(self, service, generator, record_store):
        character = await _create(service)
        await generator.generate_profile(character)
        await service.delete_character("u1", character.id)
        assert character.id not in record_store.characters
        assert character.id not in record_store.profiles

    async def test_delete_foreign_character(self, service, record_store):
        character = await _create(service)
        with pytest.raises(CharacterNotFoundError):
            await service.delete_character("u2", character.id)
        assert character.id in record_store.characters

    async def test_regenerate_profile_returns_task(self, service):
        character = await _create(service)
        task = await service.regenerate_profile("u1", character.id)
        profile = await task
        assert profile.status is ProfileStatus.completed
