"""Permanent conversation records and flow results.

These records are the unbounded history kept by the persistence layer.
They are independent of the TTL-scoped session window held by
``ConversationContextManager``.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from datetime import timezone
from enum import Enum

from pydantic import BaseModel
from pydantic import Field

from rolerag.engine.schemas import RetrievalCandidate


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FragmentSummary(BaseModel):
    """Reference to a fragment that grounded a reply."""

    id: str
    content: str
    chunk_position: int | None = None

    @classmethod
    def from_candidate(
        cls, candidate: RetrievalCandidate, *, max_chars: int | None = None
    ) -> FragmentSummary:
        content = candidate.content
        if max_chars is not None and len(content) > max_chars:
            content = content[:max_chars] + "..."
        return cls(
            id=candidate.id,
            content=content,
            chunk_position=candidate.chunk_position,
        )


# ---------------------------------------------------------------------------
# Knowledge-base Q&A
# ---------------------------------------------------------------------------


class ChatRecord(BaseModel):
    """One persisted question/answer exchange."""

    id: str = Field(default_factory=lambda: f"chat_{uuid.uuid4().hex}")
    session_id: str
    owner_id: str
    knowledge_base_id: str
    question: str
    answer: str
    fragments: list[FragmentSummary] = Field(default_factory=list)
    response_time_ms: int = 0
    created_at: datetime = Field(default_factory=_utcnow)


class Answer(BaseModel):
    """Result of ``QuestionAnswerService.ask_question``."""

    session_id: str
    answer: str
    fragments: list[FragmentSummary] = Field(default_factory=list)
    response_time_ms: int = 0
    degraded: bool = Field(
        default=False,
        description="True when an upstream failure replaced the real answer.",
    )


# ---------------------------------------------------------------------------
# Role-play
# ---------------------------------------------------------------------------


class RolePlaySessionStatus(str, Enum):
    active = "active"
    ended = "ended"


class RolePlaySessionSettings(BaseModel):
    max_history_length: int = Field(default=20, gt=0)
    use_rag: bool = True
    temperature: float = 0.7
    max_tokens: int = Field(default=1000, gt=0)


class RolePlaySession(BaseModel):
    """A persisted role-play conversation between a user and a character."""

    session_id: str
    owner_id: str
    character_id: str
    name: str
    status: RolePlaySessionStatus = RolePlaySessionStatus.active
    message_count: int = 0
    settings: RolePlaySessionSettings = Field(
        default_factory=RolePlaySessionSettings
    )
    created_at: datetime = Field(default_factory=_utcnow)
    last_activity_at: datetime = Field(default_factory=_utcnow)


class TokenUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class RolePlayTurnRecord(BaseModel):
    """One persisted role-play exchange."""

    id: str = Field(default_factory=lambda: f"turn_{uuid.uuid4().hex}")
    session_id: str
    owner_id: str
    character_id: str
    turn_number: int = Field(ge=1)
    user_message: str
    character_response: str
    system_prompt_used: str = ""
    used_rag: bool = False
    fragments: list[FragmentSummary] = Field(default_factory=list)
    token_usage: TokenUsage = Field(default_factory=TokenUsage)
    response_time_ms: int = 0
    rating: int | None = Field(default=None, ge=1, le=5)
    feedback: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
