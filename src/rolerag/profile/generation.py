"""Character profile generation pipeline.

State machine per character::

    (none) -> draft -> generating -> completed
                       generating -> failed
    failed | draft | completed -> generating   (version + 1)

A run first persists a ``generating`` placeholder, then retrieves
grounding fragments, generates every field independently (a failing
field degrades to a ``FieldFallback`` instead of failing the run),
renders the composite system prompt and finally persists the
``completed`` profile.  Anything the field and template stages do not
absorb marks the profile ``failed`` with a diagnostic system prompt and
is re-raised.

Runs for the same character are serialized with a per-character lock;
different characters proceed in parallel.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from collections.abc import Callable
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from datetime import timezone
from typing import TYPE_CHECKING

from rolerag.config import LLMConfig
from rolerag.config import ProfileTemplateConfig
from rolerag.engine.hybrid import HybridRetrievalEngine
from rolerag.engine.llm_adapters import LLMAdapter
from rolerag.engine.prompt_builder import build_base_context
from rolerag.engine.prompt_builder import build_generation_prompt
from rolerag.engine.prompt_builder import build_minimal_system_prompt
from rolerag.engine.prompt_builder import format_fragments
from rolerag.engine.schemas import RetrievalCandidate
from rolerag.errors import ProfileNotFoundError
from rolerag.observability import track_latency
from rolerag.profile.schemas import Character
from rolerag.profile.schemas import CharacterProfile
from rolerag.profile.schemas import FieldFallback
from rolerag.profile.schemas import FieldOrigin
from rolerag.profile.schemas import FieldValue
from rolerag.profile.schemas import GenerationMethod
from rolerag.profile.schemas import ProfileField
from rolerag.profile.schemas import ProfileStatus
from rolerag.profile.schemas import ProfileUpdate
from rolerag.profile.template import SystemPromptTemplate

if TYPE_CHECKING:
    from rolerag.store.protocols import RecordStore

logger = logging.getLogger(__name__)

GENERATING_PLACEHOLDER = "Generating character profile..."
FRAGMENTS_PER_QUERY = 5

RETRIEVAL_QUERIES: tuple[str, ...] = (
    "personality character traits temperament",
    "way of speaking language style expressions",
    "background story experiences history",
    "interests hobbies expertise skills",
    "goals motivations wishes",
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Field specifications
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FieldSpec:
    """How one profile field is generated and what replaces it on failure."""

    field: ProfileField
    task: str
    instructions: str
    fallback: Callable[[Character], str]
    fragment_limit: int = 6


def _static(text: str) -> Callable[[Character], str]:
    return lambda character: text


def _example_fallback(character: Character) -> str:
    return (
        f"Q: Hello!\nA: Hello! I'm {character.name}, nice to meet you!\n\n"
        "Q: Can you help me with a question?\n"
        "A: That's a good question, let me think...\n\n"
        "Q: Goodbye!\n"
        "A: I hope our conversation helped, talk to you next time!"
    )


FIELD_SPECS: tuple[FieldSpec, ...] = (
    FieldSpec(
        field=ProfileField.background,
        task="Write a detailed background story for the character below.",
        instructions=(
            "Cover upbringing, major life events, relationships, the source "
            "of their skills and knowledge, values and beliefs. Stay "
            "consistent with the knowledge base content; 300-500 words."
        ),
        fallback=_static("A background story built from the knowledge base content."),
        fragment_limit=8,
    ),
    FieldSpec(
        field=ProfileField.personality,
        task="Describe the personality traits of the character below.",
        instructions=(
            "List 3-5 core traits with a short explanation each, grounded in "
            "the knowledge base content."
        ),
        fallback=_static("Friendly, wise, patient, humorous"),
    ),
    FieldSpec(
        field=ProfileField.speaking_style,
        task="Describe the speaking style of the character below.",
        instructions=(
            "Describe tone, vocabulary, habitual phrases and how the "
            "character explains things."
        ),
        fallback=_static(
            "Gentle and thoughtful, likes to explain complex ideas with "
            "metaphors and stories"
        ),
    ),
    FieldSpec(
        field=ProfileField.interests,
        task="List the interests and hobbies of the character below.",
        instructions="Give a short list grounded in the knowledge base content.",
        fallback=_static("Reading, thinking, helping others solve problems"),
    ),
    FieldSpec(
        field=ProfileField.expertise,
        task="Describe the areas of expertise of the character below.",
        instructions=(
            "List the domains the character knows well and how deeply, "
            "grounded in the knowledge base content."
        ),
        fallback=_static("Expertise drawn from the knowledge base content"),
        fragment_limit=8,
    ),
    FieldSpec(
        field=ProfileField.emotional_pattern,
        task="Describe the emotional patterns of the character below.",
        instructions=(
            "Describe how the character feels and shows emotions, and how "
            "they react to praise, criticism and conflict."
        ),
        fallback=_static("Emotionally stable, a good listener, empathetic"),
    ),
    FieldSpec(
        field=ProfileField.conversation_examples,
        task="Write example dialogues for the character below.",
        instructions=(
            "Write three short exchanges (greeting, answering a question, "
            "farewell) in the format:\nQ: ...\nA: ..."
        ),
        fallback=_example_fallback,
    ),
    FieldSpec(
        field=ProfileField.restrictions,
        task="Define behavioural restrictions for the character below.",
        instructions=(
            "List what the character must never do or say, including "
            "safety rules and staying in character."
        ),
        fallback=_static(
            "Never provide harmful information, avoid inappropriate "
            "discussions, stay in character"
        ),
    ),
    FieldSpec(
        field=ProfileField.goals,
        task="Describe the goals and motivations of the character below.",
        instructions="Describe what drives the character and what they want.",
        fallback=_static(
            "Help users gain valuable information and insight through "
            "meaningful conversation"
        ),
    ),
)


# ---------------------------------------------------------------------------
# ProfileGenerator
# ---------------------------------------------------------------------------


class ProfileGenerator:
    """Generates, regenerates and manually updates character profiles."""

    def __init__(
        self,
        store: RecordStore,
        retrieval: HybridRetrievalEngine,
        llm: LLMAdapter,
        *,
        llm_config: LLMConfig | None = None,
        template_config: ProfileTemplateConfig | None = None,
        field_specs: Sequence[FieldSpec] = FIELD_SPECS,
    ) -> None:
        self._store = store
        self._retrieval = retrieval
        self._llm = llm
        self._llm_config = llm_config or LLMConfig()
        self._template_config = template_config or ProfileTemplateConfig()
        self._field_specs = tuple(field_specs)
        self._template = SystemPromptTemplate(
            llm,
            temperature=self._llm_config.temperature,
            max_tokens=self._llm_config.max_tokens,
            timeout_seconds=self._llm_config.timeout_seconds,
        )
        # Entries vanish once no run holds or waits on the lock.
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._tasks: dict[str, asyncio.Task] = {}

    @property
    def template_config(self) -> ProfileTemplateConfig:
        return self._template_config

    def _lock_for(self, character_id: str) -> asyncio.Lock:
        lock = self._locks.get(character_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[character_id] = lock
        return lock

    # -- generation --

    async def generate_profile(
        self,
        character: Character,
        template_config: ProfileTemplateConfig | None = None,
    ) -> CharacterProfile:
        """Run a full generation and return the completed profile.

        Raises whatever the pipeline could not absorb, after persisting
        the profile as ``failed``.
        """
        async with self._lock_for(character.id):
            async with track_latency("profile.generate"):
                profile = await self._start_run(character)
                try:
                    profile = await self._run(
                        character, profile, template_config or self._template_config
                    )
                except Exception as exc:
                    logger.exception(
                        "Profile generation failed for character %s", character.id
                    )
                    await self._store.save_profile(self._failed(profile, exc))
                    raise
                logger.info(
                    "Profile v%d generated for character %s",
                    profile.version,
                    character.id,
                )
                return profile

    def start_generation(
        self,
        character: Character,
        template_config: ProfileTemplateConfig | None = None,
    ) -> asyncio.Task:
        """Dispatch a background generation, at most one per character.

        While a run for *character* is still pending, the existing task is
        returned instead of starting another one.
        """
        running = self._tasks.get(character.id)
        if running is not None and not running.done():
            return running

        task = asyncio.create_task(
            self._generate_in_background(character, template_config),
            name=f"profile-generation-{character.id}",
        )
        self._tasks[character.id] = task

        def _forget(done: asyncio.Task) -> None:
            if self._tasks.get(character.id) is done:
                del self._tasks[character.id]

        task.add_done_callback(_forget)
        return task

    async def _generate_in_background(
        self,
        character: Character,
        template_config: ProfileTemplateConfig | None,
    ) -> CharacterProfile | None:
        try:
            return await self.generate_profile(character, template_config)
        except Exception:
            # Already logged and persisted as failed.
            return None

    async def regenerate_system_prompt(
        self,
        character: Character,
        template_config: ProfileTemplateConfig | None = None,
    ) -> CharacterProfile:
        """Re-render only the composite system prompt (version + 1)."""
        async with self._lock_for(character.id):
            profile = await self._store.get_profile(character.id)
            if profile is None:
                raise ProfileNotFoundError(
                    f"No profile for character {character.id}"
                )
            config = template_config or self._template_config
            fragments = await self._retrieve(character)
            state, sections = await self._compose_system_prompt(
                character, profile, fragments, config
            )
            fields = {**profile.fields, ProfileField.system_prompt: state}
            updated = _validated(
                profile,
                fields=fields,
                version=profile.version + 1,
                generation_config={
                    **profile.generation_config,
                    "template_type": config.template_type,
                    "template_fallback_sections": list(sections),
                    "prompt_regenerated_at": _utcnow().isoformat(),
                },
                updated_at=_utcnow(),
            )
            await self._store.save_profile(updated)
            logger.info(
                "System prompt regenerated for character %s (v%d)",
                character.id,
                updated.version,
            )
            return updated

    # -- reads --

    async def get_profile(self, character_id: str) -> CharacterProfile | None:
        return await self._store.get_profile(character_id)

    async def is_profile_completed(self, character_id: str) -> bool:
        profile = await self._store.get_profile(character_id)
        return profile is not None and profile.status is ProfileStatus.completed

    # -- manual edits --

    async def update_profile(
        self, character_id: str, update: ProfileUpdate
    ) -> CharacterProfile:
        """Overwrite the provided fields by hand (version + 1)."""
        async with self._lock_for(character_id):
            profile = await self._store.get_profile(character_id)
            if profile is None:
                raise ProfileNotFoundError(f"No profile for character {character_id}")
            fields = dict(profile.fields)
            for field, text in update.provided().items():
                fields[field] = FieldValue(text=text, origin=FieldOrigin.manual)
            updated = _validated(
                profile,
                fields=fields,
                generation_method=GenerationMethod.manual,
                version=profile.version + 1,
                updated_at=_utcnow(),
            )
            await self._store.save_profile(updated)
            return updated

    # -- pipeline stages --

    async def _start_run(self, character: Character) -> CharacterProfile:
        existing = await self._store.get_profile(character.id)
        placeholder = FieldValue(text=GENERATING_PLACEHOLDER)
        if existing is None:
            profile = CharacterProfile(
                character_id=character.id,
                fields={ProfileField.system_prompt: placeholder},
                status=ProfileStatus.generating,
            )
        else:
            profile = _validated(
                existing,
                fields={**existing.fields, ProfileField.system_prompt: placeholder},
                status=ProfileStatus.generating,
                generation_method=GenerationMethod.ai_generated,
                version=existing.version + 1,
                error_message=None,
                updated_at=_utcnow(),
            )
        await self._store.save_profile(profile)
        return profile

    async def _run(
        self,
        character: Character,
        profile: CharacterProfile,
        config: ProfileTemplateConfig,
    ) -> CharacterProfile:
        fragments = await self._retrieve(character)
        fields = dict(profile.fields)
        for spec in self._field_specs:
            fields[spec.field] = await self._generate_field(
                spec, character, fragments, profile
            )
        working = profile.model_copy(update={"fields": fields})

        state, sections = await self._compose_system_prompt(
            character, working, fragments, config
        )
        fields[ProfileField.system_prompt] = state
        fallback_fields = [
            field.value
            for field, value in fields.items()
            if isinstance(value, FieldFallback)
        ]
        completed = _validated(
            working,
            fields=fields,
            status=ProfileStatus.completed,
            generation_config={
                "fragments_used": len(fragments),
                "model": self._llm_config.model,
                "fallback_fields": fallback_fields,
                "template_type": config.template_type,
                "template_fallback_sections": list(sections),
                "generated_at": _utcnow().isoformat(),
            },
            updated_at=_utcnow(),
        )
        await self._store.save_profile(completed)
        return completed

    async def _retrieve(self, character: Character) -> list[RetrievalCandidate]:
        queries = (*RETRIEVAL_QUERIES, f"{character.name} {character.description}")
        seen: dict[str, RetrievalCandidate] = {}
        for query in queries:
            try:
                results = await self._retrieval.hybrid_search(
                    query, character.knowledge_base_id
                )
            except Exception:
                logger.warning(
                    "Retrieval failed for query %r (character %s)",
                    query,
                    character.id,
                    exc_info=True,
                )
                continue
            for candidate in results[:FRAGMENTS_PER_QUERY]:
                seen.setdefault(candidate.id, candidate)
        logger.debug(
            "Retrieved %d unique fragments for character %s", len(seen), character.id
        )
        return list(seen.values())

    async def _generate_field(
        self,
        spec: FieldSpec,
        character: Character,
        fragments: Sequence[RetrievalCandidate],
        profile: CharacterProfile,
    ) -> FieldValue | FieldFallback:
        previous = profile.text(spec.field)
        prompt = build_generation_prompt(
            task=spec.task,
            name=character.name,
            description=character.description,
            knowledge=format_fragments(fragments, limit=spec.fragment_limit),
            instructions=spec.instructions,
            extra=[("Previous version", previous)] if previous else (),
        )
        try:
            text = await self._complete(prompt)
        except Exception as exc:
            logger.warning(
                "Field %s failed for character %s, using fallback",
                spec.field.value,
                character.id,
                exc_info=True,
            )
            return FieldFallback(
                text=spec.fallback(character), reason=f"{type(exc).__name__}: {exc}"
            )
        if not text.strip():
            return FieldFallback(
                text=spec.fallback(character), reason="empty completion"
            )
        return FieldValue(text=text.strip())

    async def _compose_system_prompt(
        self,
        character: Character,
        profile: CharacterProfile,
        fragments: Sequence[RetrievalCandidate],
        config: ProfileTemplateConfig,
    ) -> tuple[FieldValue | FieldFallback, tuple[str, ...]]:
        try:
            rendered = await self._template.render(
                character, profile, fragments, config
            )
        except Exception as exc:
            logger.exception(
                "System prompt template failed for character %s", character.id
            )
            known = [
                f"{field.value}: {profile.text(field)}"
                for field in ProfileField
                if field is not ProfileField.system_prompt and profile.text(field)
            ]
            context = "\n".join(known) + "\n\n" + build_base_context(
                character.name, character.description, fragments
            )
            text = build_minimal_system_prompt(
                character.name, character.description, context
            )
            return FieldFallback(text=text, reason=f"{type(exc).__name__}: {exc}"), ()
        return FieldValue(text=rendered.text), rendered.fallback_sections

    async def _complete(self, prompt: str) -> str:
        return await self._llm.complete(
            prompt,
            temperature=self._llm_config.temperature,
            max_tokens=self._llm_config.max_tokens,
            timeout_seconds=self._llm_config.timeout_seconds,
        )

    def _failed(self, profile: CharacterProfile, exc: Exception) -> CharacterProfile:
        diagnostic = f"Character profile generation failed: {exc}"
        return _validated(
            profile,
            fields={
                **profile.fields,
                ProfileField.system_prompt: FieldFallback(
                    text=diagnostic, reason=type(exc).__name__
                ),
            },
            status=ProfileStatus.failed,
            error_message=str(exc) or type(exc).__name__,
            updated_at=_utcnow(),
        )


def _validated(profile: CharacterProfile, **updates: object) -> CharacterProfile:
    """Copy *profile* with *updates*, re-running model validation."""
    return CharacterProfile.model_validate({**profile.model_dump(), **updates})
