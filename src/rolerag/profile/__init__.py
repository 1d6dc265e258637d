"""Profile domain: characters, generated personas and system-prompt templates."""

from rolerag.profile.characters import CharacterService
from rolerag.profile.generation import FIELD_SPECS
from rolerag.profile.generation import FieldSpec
from rolerag.profile.generation import ProfileGenerator
from rolerag.profile.schemas import Character
from rolerag.profile.schemas import CharacterProfile
from rolerag.profile.schemas import CharacterStatus
from rolerag.profile.schemas import FieldFallback
from rolerag.profile.schemas import FieldOrigin
from rolerag.profile.schemas import FieldPending
from rolerag.profile.schemas import FieldValue
from rolerag.profile.schemas import GenerationMethod
from rolerag.profile.schemas import ProfileField
from rolerag.profile.schemas import ProfileStatus
from rolerag.profile.schemas import ProfileUpdate
from rolerag.profile.template import SystemPromptTemplate

__all__ = [
    "Character",
    "CharacterProfile",
    "CharacterService",
    "CharacterStatus",
    "FIELD_SPECS",
    "FieldFallback",
    "FieldOrigin",
    "FieldPending",
    "FieldSpec",
    "FieldValue",
    "GenerationMethod",
    "ProfileField",
    "ProfileGenerator",
    "ProfileStatus",
    "ProfileUpdate",
    "SystemPromptTemplate",
]
