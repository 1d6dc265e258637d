"""Persistence collaborator interface.

The conversation flows and the profile pipeline only depend on this
protocol.  ``Neo4jRecordStore`` is the shipped implementation.
"""

from __future__ import annotations

from typing import Protocol
from typing import runtime_checkable

from rolerag.chat.schemas import ChatRecord
from rolerag.chat.schemas import RolePlaySession
from rolerag.chat.schemas import RolePlayTurnRecord
from rolerag.profile.schemas import Character
from rolerag.profile.schemas import CharacterProfile


@runtime_checkable
class RecordStore(Protocol):
    """Permanent storage for characters, profiles and conversation records."""

    # -- characters --

    async def save_character(self, character: Character) -> None: ...

    async def get_character(self, character_id: str) -> Character | None: ...

    async def find_character_by_name(
        self, owner_id: str, name: str
    ) -> Character | None: ...

    async def list_characters(self, owner_id: str) -> list[Character]: ...

    async def delete_character(self, character_id: str) -> bool:
        """Delete a character together with its profile."""

    # -- profiles --

    async def save_profile(self, profile: CharacterProfile) -> None: ...

    async def get_profile(self, character_id: str) -> CharacterProfile | None: ...

    # -- Q&A records --

    async def save_chat_record(self, record: ChatRecord) -> None: ...

    async def list_chat_records(
        self, owner_id: str, session_id: str | None = None
    ) -> list[ChatRecord]:
        """Return records oldest first."""

    async def delete_chat_records(self, session_id: str) -> int: ...

    # -- role-play --

    async def save_roleplay_session(self, session: RolePlaySession) -> None: ...

    async def get_roleplay_session(self, session_id: str) -> RolePlaySession | None: ...

    async def delete_roleplay_session(self, session_id: str) -> bool: ...

    async def save_turn(self, turn: RolePlayTurnRecord) -> None: ...

    async def get_turn(self, turn_id: str) -> RolePlayTurnRecord | None: ...

    async def list_turns(
        self, session_id: str, *, limit: int | None = None
    ) -> list[RolePlayTurnRecord]:
        """Return the latest *limit* turns (all when ``None``), oldest first."""

    async def delete_turns(self, session_id: str) -> int: ...
