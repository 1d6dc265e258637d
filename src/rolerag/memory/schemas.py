"""Conversation session data models."""

from __future__ import annotations

import time
import uuid
from enum import Enum

from pydantic import BaseModel
from pydantic import Field


class TurnRole(str, Enum):
    user = "user"
    assistant = "assistant"


class ConversationTurn(BaseModel):
    """One message within a session; immutable once appended."""

    model_config = {"frozen": True}

    role: TurnRole = Field(description="Who produced the message.")
    content: str = Field(description="Message text.")
    fragment_ids: list[str] = Field(
        default_factory=list,
        description="Knowledge-base fragments that grounded an assistant turn.",
    )
    created_at: float = Field(
        default_factory=time.time,
        description="Unix epoch when the turn was created.",
    )


class ConversationSession(BaseModel):
    """Bounded, TTL-scoped conversational state held in the session cache.

    Not the permanent record: the persistence layer keeps an independent,
    unbounded copy of every exchange.
    """

    session_id: str = Field(
        default_factory=lambda: uuid.uuid4().hex,
        description="Opaque, globally unique session identifier.",
    )
    owner_id: str = Field(description="User that owns the session.")
    knowledge_base_id: str = Field(
        description="Knowledge base the session retrieves from."
    )
    character_id: str | None = Field(
        default=None,
        description="Character played in the session, for role-play sessions.",
    )
    turns: list[ConversationTurn] = Field(
        default_factory=list,
        description="Ordered turns, oldest first, bounded by the turn window.",
    )
    created_at: float = Field(default_factory=time.time)
    last_active_at: float = Field(default_factory=time.time)
