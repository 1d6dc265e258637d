"""Character lifecycle: creation, ownership checks and activation."""

from __future__ import annotations

import logging
from datetime import datetime
from datetime import timezone
from typing import TYPE_CHECKING

from rolerag.errors import CharacterNotFoundError
from rolerag.errors import ProfileGenerationInProgressError
from rolerag.errors import ProfileNotReadyError
from rolerag.profile.generation import ProfileGenerator
from rolerag.profile.schemas import Character
from rolerag.profile.schemas import CharacterStatus
from rolerag.profile.schemas import ProfileStatus

if TYPE_CHECKING:
    from rolerag.store.protocols import RecordStore

logger = logging.getLogger(__name__)


class CharacterService:
    """Owner-scoped character management.

    A character starts as ``draft`` and can only be activated once its
    profile has completed generation.
    """

    def __init__(self, store: RecordStore, generator: ProfileGenerator) -> None:
        self._store = store
        self._generator = generator

    async def create_character(
        self,
        owner_id: str,
        knowledge_base_id: str,
        name: str,
        description: str = "",
        *,
        is_public: bool = False,
        generate_profile: bool = True,
    ) -> Character:
        """Create a draft character and dispatch its profile generation.

        Raises ``ValueError`` when *owner_id* already has a character
        called *name*.
        """
        if await self._store.find_character_by_name(owner_id, name) is not None:
            raise ValueError(f"Character name already exists: {name}")
        character = Character(
            owner_id=owner_id,
            knowledge_base_id=knowledge_base_id,
            name=name,
            description=description,
            is_public=is_public,
        )
        await self._store.save_character(character)
        logger.info("Created character %s for owner %s", character.id, owner_id)
        if generate_profile:
            self._generator.start_generation(character)
        return character

    async def get_character(self, owner_id: str, character_id: str) -> Character:
        character = await self._store.get_character(character_id)
        if character is None or character.owner_id != owner_id:
            raise CharacterNotFoundError(f"Character {character_id} not found")
        return character

    async def list_characters(
        self, owner_id: str, *, status: CharacterStatus | None = None
    ) -> list[Character]:
        characters = await self._store.list_characters(owner_id)
        if status is None:
            return characters
        return [c for c in characters if c.status is status]

    async def update_character(
        self,
        owner_id: str,
        character_id: str,
        *,
        name: str | None = None,
        description: str | None = None,
        is_public: bool | None = None,
    ) -> Character:
        character = await self.get_character(owner_id, character_id)
        updates: dict[str, object] = {}
        if name is not None and name != character.name:
            if await self._store.find_character_by_name(owner_id, name) is not None:
                raise ValueError(f"Character name already exists: {name}")
            updates["name"] = name
        if description is not None:
            updates["description"] = description
        if is_public is not None:
            updates["is_public"] = is_public
        return await self._save(character, **updates)

    async def delete_character(self, owner_id: str, character_id: str) -> None:
        await self.get_character(owner_id, character_id)
        await self._store.delete_character(character_id)
        logger.info("Deleted character %s", character_id)

    async def activate_character(self, owner_id: str, character_id: str) -> Character:
        character = await self.get_character(owner_id, character_id)
        profile = await self._store.get_profile(character_id)
        if profile is not None and profile.status is ProfileStatus.generating:
            raise ProfileGenerationInProgressError(
                f"Profile of character {character_id} is still generating"
            )
        if profile is None or profile.status is not ProfileStatus.completed:
            raise ProfileNotReadyError(
                f"Profile of character {character_id} is not completed"
            )
        return await self._save(character, status=CharacterStatus.active)

    async def deactivate_character(
        self, owner_id: str, character_id: str
    ) -> Character:
        character = await self.get_character(owner_id, character_id)
        return await self._save(character, status=CharacterStatus.inactive)

    async def regenerate_profile(self, owner_id: str, character_id: str):
        """Dispatch a background profile generation; returns the task."""
        character = await self.get_character(owner_id, character_id)
        logger.info("Profile regeneration requested for character %s", character_id)
        return self._generator.start_generation(character)

    async def _save(self, character: Character, **updates: object) -> Character:
        updated = Character.model_validate(
            {
                **character.model_dump(),
                **updates,
                "updated_at": datetime.now(timezone.utc),
            }
        )
        await self._store.save_character(updated)
        return updated
