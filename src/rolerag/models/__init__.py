"""Models domain: input and output contracts of the MCP tools."""

from __future__ import annotations

from rolerag.models.schemas import AskQuestionInput
from rolerag.models.schemas import AskQuestionResult
from rolerag.models.schemas import CharacterResult
from rolerag.models.schemas import CreateCharacterInput
from rolerag.models.schemas import ProfileResult
from rolerag.models.schemas import RateTurnInput
from rolerag.models.schemas import RolePlaySessionResult
from rolerag.models.schemas import RolePlayTurnResult
from rolerag.models.schemas import SendMessageInput
from rolerag.models.schemas import ToolResult

__all__ = [
    "AskQuestionInput",
    "AskQuestionResult",
    "CharacterResult",
    "CreateCharacterInput",
    "ProfileResult",
    "RateTurnInput",
    "RolePlaySessionResult",
    "RolePlayTurnResult",
    "SendMessageInput",
    "ToolResult",
]
