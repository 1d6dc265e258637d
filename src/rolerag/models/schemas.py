"""Pydantic models for the MCP interface.

Input models validate tool arguments; output models shape responses.
Every result carries a ``status`` (``ok`` or ``rejected``) and, when
rejected, the ``error_code`` of the domain error that caused it.
"""

from __future__ import annotations

from pydantic import BaseModel
from pydantic import Field

from rolerag.chat.schemas import Answer
from rolerag.chat.schemas import RolePlaySession
from rolerag.chat.schemas import RolePlayTurnRecord
from rolerag.profile.schemas import Character
from rolerag.profile.schemas import CharacterProfile

# ---------------------------------------------------------------------------
# Input models
# ---------------------------------------------------------------------------


class AskQuestionInput(BaseModel):
    """Input for ask_question tool."""

    question: str = Field(
        min_length=1,
        description="Natural language question about the knowledge base.",
    )
    knowledge_base_id: str = Field(
        min_length=1,
        description="Knowledge base the answer must be grounded in.",
    )
    owner_id: str = Field(
        min_length=1,
        description="Identifier of the asking user.",
    )
    session_id: str | None = Field(
        default=None,
        description="Session to continue; a new one is created when omitted.",
    )


class CreateCharacterInput(BaseModel):
    """Input for create_character tool."""

    owner_id: str = Field(min_length=1)
    knowledge_base_id: str = Field(
        min_length=1,
        description="Knowledge base the persona is distilled from.",
    )
    name: str = Field(min_length=1, max_length=100)
    description: str = Field(default="", max_length=500)
    is_public: bool = False


class SendMessageInput(BaseModel):
    """Input for send_roleplay_message tool."""

    owner_id: str = Field(min_length=1)
    session_id: str = Field(min_length=1)
    message: str = Field(
        min_length=1,
        description="What the user says to the character.",
    )


class RateTurnInput(BaseModel):
    """Input for rate_roleplay_turn tool."""

    owner_id: str = Field(min_length=1)
    turn_id: str = Field(min_length=1)
    rating: int = Field(ge=1, le=5, description="Score between 1 and 5.")
    feedback: str | None = None


# ---------------------------------------------------------------------------
# Output models
# ---------------------------------------------------------------------------


class ToolResult(BaseModel):
    """Common envelope of every tool response."""

    status: str = Field(
        default="ok",
        description="Outcome status (ok, rejected).",
    )
    error_code: str | None = Field(
        default=None,
        description="Machine-readable reason when the call was rejected.",
    )
    message: str | None = Field(
        default=None,
        description="Human-readable detail when the call was rejected.",
    )


class AskQuestionResult(ToolResult):
    """Response from ask_question."""

    answer: Answer | None = None


class CharacterResult(ToolResult):
    """Response from the character tools."""

    character: Character | None = None
    profile: CharacterProfile | None = Field(
        default=None,
        description="Current profile, when one has been generated.",
    )


class ProfileResult(ToolResult):
    """Response from the profile tools."""

    profile: CharacterProfile | None = None


class RolePlaySessionResult(ToolResult):
    """Response from the role-play session tools."""

    session: RolePlaySession | None = None
    turns: list[RolePlayTurnRecord] = Field(default_factory=list)


class RolePlayTurnResult(ToolResult):
    """Response from send_roleplay_message and rate_roleplay_turn."""

    turn: RolePlayTurnRecord | None = None
