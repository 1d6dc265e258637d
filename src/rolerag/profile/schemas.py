"""Character and character-profile models.

A profile holds one state per ``ProfileField``.  The state records how
the value was obtained (still pending, produced by the model or typed by
a user, or substituted by a fallback) so that consumers never have to
guess whether a text is real content or a placeholder.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from datetime import timezone
from enum import Enum
from typing import Annotated
from typing import Literal
from typing import Union

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import model_validator

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class ProfileField(str, Enum):
    """Named attributes of a character profile."""

    background = "background"
    personality = "personality"
    speaking_style = "speaking_style"
    interests = "interests"
    expertise = "expertise"
    emotional_pattern = "emotional_pattern"
    conversation_examples = "conversation_examples"
    restrictions = "restrictions"
    goals = "goals"
    system_prompt = "system_prompt"


class ProfileStatus(str, Enum):
    """Lifecycle of a profile generation."""

    draft = "draft"
    generating = "generating"
    completed = "completed"
    failed = "failed"


class GenerationMethod(str, Enum):
    ai_generated = "ai_generated"
    manual = "manual"
    template = "template"


class FieldOrigin(str, Enum):
    model = "model"
    manual = "manual"


class CharacterStatus(str, Enum):
    """Lifecycle of a character; only active characters can be played."""

    draft = "draft"
    active = "active"
    inactive = "inactive"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Field states
# ---------------------------------------------------------------------------


class FieldPending(BaseModel):
    """The field has not been produced yet."""

    model_config = {"frozen": True}

    kind: Literal["pending"] = "pending"

    @property
    def text(self) -> None:
        return None


class FieldValue(BaseModel):
    """Real content, produced by the model or entered manually."""

    model_config = {"frozen": True}

    kind: Literal["value"] = "value"
    text: str
    origin: FieldOrigin = FieldOrigin.model


class FieldFallback(BaseModel):
    """Substitute content used because generation of the field failed."""

    model_config = {"frozen": True}

    kind: Literal["fallback"] = "fallback"
    text: str
    reason: str = Field(description="Why the real value could not be produced.")


FieldState = Annotated[
    Union[FieldPending, FieldValue, FieldFallback],
    Field(discriminator="kind"),
]


# ---------------------------------------------------------------------------
# Character
# ---------------------------------------------------------------------------


class Character(BaseModel):
    """A character derived from one knowledge base, owned by one user."""

    id: str = Field(default_factory=lambda: f"char_{uuid.uuid4().hex}")
    owner_id: str
    knowledge_base_id: str
    name: str = Field(min_length=1, max_length=100)
    description: str = Field(default="", max_length=500)
    status: CharacterStatus = CharacterStatus.draft
    is_public: bool = False
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


# ---------------------------------------------------------------------------
# Profile
# ---------------------------------------------------------------------------


class CharacterProfile(BaseModel):
    """Versioned, generated persona of a character.

    Invariant: outside of ``draft`` the system prompt is never empty.
    """

    id: str = Field(default_factory=lambda: f"prof_{uuid.uuid4().hex}")
    character_id: str
    fields: dict[ProfileField, FieldState] = Field(default_factory=dict)
    status: ProfileStatus = ProfileStatus.draft
    generation_method: GenerationMethod = GenerationMethod.ai_generated
    version: int = Field(default=1, ge=1)
    generation_config: dict = Field(
        default_factory=dict,
        description="Audit information about the last generation run.",
    )
    error_message: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @model_validator(mode="after")
    def _system_prompt_present(self) -> CharacterProfile:
        if self.status is not ProfileStatus.draft and not (
            self.text(ProfileField.system_prompt) or ""
        ).strip():
            raise ValueError(
                f"system_prompt must be non-empty when status is {self.status.value}"
            )
        return self

    def state(self, field: ProfileField) -> FieldPending | FieldValue | FieldFallback:
        return self.fields.get(field, FieldPending())

    def text(self, field: ProfileField) -> str | None:
        """Return the field text (value or fallback), ``None`` when pending."""
        return self.state(field).text

    @property
    def system_prompt(self) -> str:
        return self.text(ProfileField.system_prompt) or ""

    @property
    def fallback_fields(self) -> list[ProfileField]:
        return [
            field
            for field, state in self.fields.items()
            if isinstance(state, FieldFallback)
        ]


class ProfileUpdate(BaseModel):
    """Manual overwrite of profile fields; ``None`` leaves a field untouched."""

    model_config = ConfigDict(extra="forbid")

    background: str | None = None
    personality: str | None = None
    speaking_style: str | None = None
    interests: str | None = None
    expertise: str | None = None
    emotional_pattern: str | None = None
    conversation_examples: str | None = None
    restrictions: str | None = None
    goals: str | None = None
    system_prompt: str | None = None

    def provided(self) -> dict[ProfileField, str]:
        return {
            ProfileField(name): value
            for name, value in self.model_dump().items()
            if value is not None
        }
