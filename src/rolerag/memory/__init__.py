"""Memory domain: TTL-scoped conversation sessions."""

from __future__ import annotations

from rolerag.memory.schemas import ConversationSession
from rolerag.memory.schemas import ConversationTurn
from rolerag.memory.schemas import TurnRole
from rolerag.memory.store import ConversationContextManager
from rolerag.memory.store import estimate_tokens

__all__ = [
    "ConversationContextManager",
    "ConversationSession",
    "ConversationTurn",
    "TurnRole",
    "estimate_tokens",
]
