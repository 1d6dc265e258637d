"""Structured system-prompt template for role-play characters.

The composite system prompt is a Markdown document with one section per
aspect of the character.  Each section is produced by the model from
the retrieved fragments and the profile fields generated so far; a
section whose generation fails gets its own fallback text, so one bad
call never discards the whole prompt.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from rolerag.config import ProfileTemplateConfig
from rolerag.engine.llm_adapters import LLMAdapter
from rolerag.engine.prompt_builder import build_generation_prompt
from rolerag.engine.prompt_builder import format_fragments
from rolerag.engine.schemas import RetrievalCandidate
from rolerag.profile.schemas import Character
from rolerag.profile.schemas import CharacterProfile
from rolerag.profile.schemas import ProfileField

logger = logging.getLogger(__name__)

TEMPLATE_TITLE = "# Role: Role-play"


@dataclass(frozen=True)
class TemplateSection:
    """Declarative description of one template section.

    ``instructions`` and ``fallback`` are ``str.format`` templates; the
    available keys are ``name`` and ``example_count``.  ``context_field``
    names the profile field fed back to the model; with
    ``fallback_to_known`` its current text is preferred over ``fallback``.
    """

    name: str
    heading: str
    toggle: str
    task: str
    instructions: str
    fallback: str
    fragment_limit: int = 6
    context_field: ProfileField | None = None
    context_label: str = ""
    fallback_to_known: bool = False


SECTIONS: tuple[TemplateSection, ...] = (
    TemplateSection(
        name="basic_info",
        heading="Basic Information",
        toggle="include_basic_info",
        task="Generate the basic information of the character below.",
        instructions=(
            "Use exactly this format:\n"
            "- Name: {{full name}}\n- Nickname: {{nickname}}\n"
            "- Gender: {{gender}}\n- Age: {{age}}\n"
            "- Occupation: {{occupation}}\n- Hometown: {{hometown}}\n"
            "- Residence: {{current residence}}\n"
            "- Education: {{education}}\n\n"
            "Infer the values from the knowledge base content; write "
            '"unknown" for anything that cannot be determined.'
        ),
        fallback=(
            "- Name: {name}\n- Nickname: {name}\n- Gender: unknown\n"
            "- Age: unknown\n- Occupation: unknown\n- Hometown: unknown\n"
            "- Residence: unknown\n- Education: unknown"
        ),
        fragment_limit=5,
    ),
    TemplateSection(
        name="personality",
        heading="Personality",
        toggle="include_personality",
        task="Analyse the personality of the character below.",
        instructions=(
            "Summarise the core traits (3-5), habits and preferences, "
            "emotional expression, social style and distinctive ways of "
            'expression. One sentence per line, each starting with "-".'
        ),
        fallback="- Friendly and gentle\n- Wise and rational\n- Patient\n- Humorous",
        context_field=ProfileField.personality,
        context_label="Known personality",
        fallback_to_known=True,
    ),
    TemplateSection(
        name="workflow",
        heading="Workflow",
        toggle="include_workflow",
        task="Design the interaction workflow of the character below.",
        instructions=(
            "Describe how the character judges who it is talking to, adapts "
            "its replies to the relationship, recognises and answers "
            "emotions, steers topics and handles special situations. One "
            'step per line, each starting with "-".'
        ),
        fallback=(
            "- Judge from the warmth of the replies whether the user is an "
            "acquaintance\n"
            "- Be casual and close with acquaintances\n"
            "- Stay polite and formal with strangers\n"
            "- Adapt the tone of replies to the topic\n"
            "- Ask or express confusion when unsure"
        ),
        context_field=ProfileField.speaking_style,
        context_label="Speaking style",
    ),
    TemplateSection(
        name="speaking_style",
        heading="Speaking Style",
        toggle="include_speaking_style",
        task="Analyse the speaking style of the character below.",
        instructions=(
            "Cover register (formal or casual, concise or detailed), common "
            "expressions and vocabulary, interjections and habitual phrases, "
            "emotional colour and use of jargon. One item per line, each "
            'starting with "-".'
        ),
        fallback=(
            "- Gentle and thoughtful language\n"
            "- Explains complex ideas with metaphors and stories\n"
            "- Listens well and guides the conversation"
        ),
        context_field=ProfileField.speaking_style,
        context_label="Known speaking style",
        fallback_to_known=True,
    ),
    TemplateSection(
        name="background",
        heading="Background",
        toggle="include_background",
        task="Generate the background setting of the character below.",
        instructions=(
            "Cover family and upbringing, major life events, relationships, "
            "sources of skills and knowledge, values and beliefs, hobbies "
            'and lifestyle. One item per line, each starting with "-".'
        ),
        fallback=(
            "- Background built from the knowledge base content\n"
            "- Rich knowledge and experience\n"
            "- Enjoys helping others solve problems"
        ),
        fragment_limit=8,
        context_field=ProfileField.background,
        context_label="Background story",
        fallback_to_known=True,
    ),
    TemplateSection(
        name="interaction_rules",
        heading="Interaction Rules",
        toggle="include_interaction_rules",
        task="Define the interaction rules of the character below.",
        instructions=(
            "Cover boundaries of emotional expression, how reply length and "
            "style vary, handling of special situations, tone and attitude, "
            'taboos and safety rules. One rule per line, each starting with "-".'
        ),
        fallback=(
            "- Stay consistent with the character settings\n"
            "- Adapt reply length and style to the conversation\n"
            "- Politely steer away from sensitive topics\n"
            "- Never provide harmful information\n"
            "- Stay friendly and professional"
        ),
        context_field=ProfileField.restrictions,
        context_label="Known restrictions",
    ),
    TemplateSection(
        name="examples",
        heading="Examples",
        toggle="include_examples",
        task="Write example dialogues for the character below.",
        instructions=(
            "Write {example_count} examples showing the character's style: "
            "a greeting, answering a question, giving an opinion, a farewell. "
            "Use the format:\nQ: {{question}}\nA: {{answer}}\n\n"
            "Separate examples with a blank line."
        ),
        fallback=(
            "Q: Hello, nice to meet you!\n"
            "A: Hello! I'm {name}, nice to meet you! I hope our conversation "
            "helps you.\n\n"
            "Q: Can you help me with this problem?\n"
            "A: Of course! Let me think... this can be looked at from a few "
            "angles.\n\n"
            "Q: Thanks for your help!\n"
            "A: You're welcome! Glad I could help, talk to you next time!"
        ),
        context_field=ProfileField.speaking_style,
        context_label="Speaking style",
    ),
)


@dataclass(frozen=True)
class RenderedTemplate:
    text: str
    fallback_sections: tuple[str, ...] = ()


def fallback_template(character: Character, profile: CharacterProfile | None) -> str:
    """Static template used when the structured template is disabled."""

    def _field(field: ProfileField, default: str) -> str:
        text = profile.text(field) if profile is not None else None
        return text or default

    name = character.name
    personality = _field(
        ProfileField.personality, "- Friendly and gentle\n- Wise and rational"
    )
    speaking_style = _field(
        ProfileField.speaking_style, "- Gentle and thoughtful language"
    )
    background = _field(
        ProfileField.background, "- Background built from the knowledge base content"
    )
    return (
        f"{TEMPLATE_TITLE}\n\n"
        "## Basic Information\n"
        f"- Name: {name}\n- Nickname: {name}\n- Gender: unknown\n"
        "- Age: unknown\n- Occupation: unknown\n- Hometown: unknown\n"
        "- Residence: unknown\n- Education: unknown\n\n"
        f"## Personality\n{personality}\n\n"
        "## Workflow\n"
        "- Judge from the warmth of the replies whether the user is an "
        "acquaintance\n"
        "- Be casual and close with acquaintances\n"
        "- Stay polite and formal with strangers\n\n"
        f"## Speaking Style\n{speaking_style}\n\n"
        f"## Background\n{background}\n\n"
        "## Interaction Rules\n"
        "- Stay consistent with the character settings\n"
        "- Adapt reply style to the conversation\n"
        "- Never provide harmful information\n\n"
        "## Examples\n"
        f"Q: Hello!\nA: Hello! I'm {name}, nice to meet you!\n"
    )


class SystemPromptTemplate:
    """Renders the composite system prompt section by section."""

    def __init__(
        self,
        llm: LLMAdapter,
        *,
        temperature: float = 0.7,
        max_tokens: int = 1000,
        timeout_seconds: float = 60.0,
    ) -> None:
        self._llm = llm
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._timeout_seconds = timeout_seconds

    async def render(
        self,
        character: Character,
        profile: CharacterProfile,
        fragments: Sequence[RetrievalCandidate],
        config: ProfileTemplateConfig | None = None,
    ) -> RenderedTemplate:
        config = config or ProfileTemplateConfig()
        if not config.enabled:
            logger.info(
                "Structured template disabled for character %s", character.id
            )
            return RenderedTemplate(text=fallback_template(character, profile))

        parts = [f"{TEMPLATE_TITLE}\n"]
        fallbacks: list[str] = []
        for section in SECTIONS:
            if not getattr(config, section.toggle):
                continue
            text, fell_back = await self._render_section(
                section, character, profile, fragments, config
            )
            if fell_back:
                fallbacks.append(section.name)
            parts.append(f"## {section.heading}\n{text.strip()}\n")

        prompt = "\n".join(parts).rstrip() + "\n"
        if config.custom_prefix:
            prompt = f"{config.custom_prefix}\n\n{prompt}"
        if config.custom_suffix:
            prompt = f"{prompt}\n{config.custom_suffix}"
        return RenderedTemplate(text=prompt, fallback_sections=tuple(fallbacks))

    async def _render_section(
        self,
        section: TemplateSection,
        character: Character,
        profile: CharacterProfile,
        fragments: Sequence[RetrievalCandidate],
        config: ProfileTemplateConfig,
    ) -> tuple[str, bool]:
        known: str | None = None
        extra: list[tuple[str, str]] = []
        if section.context_field is not None:
            known = profile.text(section.context_field)
            extra.append((section.context_label, known or "none"))
        prompt = build_generation_prompt(
            task=section.task,
            name=character.name,
            description=character.description,
            knowledge=format_fragments(fragments, limit=section.fragment_limit),
            instructions=section.instructions.format(
                name=character.name, example_count=config.example_count
            ),
            extra=extra,
        )
        try:
            text = await self._llm.complete(
                prompt,
                temperature=self._temperature,
                max_tokens=self._max_tokens,
                timeout_seconds=self._timeout_seconds,
            )
        except Exception:
            logger.warning(
                "Template section %s failed for character %s",
                section.name,
                character.id,
                exc_info=True,
            )
            text = ""
        if text.strip():
            return text, False
        if section.fallback_to_known and known:
            return known, True
        return section.fallback.format(name=character.name), True
