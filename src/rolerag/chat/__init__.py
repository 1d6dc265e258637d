"""Chat domain: knowledge-base Q&A and role-play conversations.

Exports are loaded lazily; the store persists the schemas defined here
while the services depend on the store protocol.
"""

from __future__ import annotations

from importlib import import_module

__all__ = [
    "Answer",
    "ChatRecord",
    "FragmentSummary",
    "QuestionAnswerService",
    "RolePlayService",
    "RolePlaySession",
    "RolePlaySessionSettings",
    "RolePlaySessionStatus",
    "RolePlayTurnRecord",
    "TokenUsage",
]


_EXPORT_TO_MODULE = {
    "Answer": "rolerag.chat.schemas",
    "ChatRecord": "rolerag.chat.schemas",
    "FragmentSummary": "rolerag.chat.schemas",
    "QuestionAnswerService": "rolerag.chat.qa",
    "RolePlayService": "rolerag.chat.roleplay",
    "RolePlaySession": "rolerag.chat.schemas",
    "RolePlaySessionSettings": "rolerag.chat.schemas",
    "RolePlaySessionStatus": "rolerag.chat.schemas",
    "RolePlayTurnRecord": "rolerag.chat.schemas",
    "TokenUsage": "rolerag.chat.schemas",
}


def __getattr__(name: str):
    module_name = _EXPORT_TO_MODULE.get(name)
    if module_name is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    module = import_module(module_name)
    return getattr(module, name)
