"""Prompt construction for grounded answers, role-play and profile generation.

Separate module because the prompt wording evolves independently of
the retrieval and generation control flow.  Builders take plain strings
and retrieved fragments only, so they stay free of persistence types.
"""

from __future__ import annotations

from collections.abc import Sequence

from rolerag.engine.schemas import RetrievalCandidate


def format_fragments(
    fragments: Sequence[RetrievalCandidate],
    *,
    limit: int | None = None,
    bullet: str = "",
) -> str:
    """Join fragment contents one per line, optionally capped and bulleted."""
    selected = fragments if limit is None else fragments[:limit]
    return "\n".join(f"{bullet}{fragment.content}" for fragment in selected)


# ---------------------------------------------------------------------------
# Knowledge-base Q&A
# ---------------------------------------------------------------------------


def build_qa_prompt(context: str, question: str, history: str = "") -> str:
    """Build the grounded-answer prompt, with prior exchanges when present."""
    sections = [
        "Answer the user's question using the knowledge base content and the "
        "conversation history below. If the knowledge base does not contain "
        "the relevant information, say so explicitly.\n"
    ]
    if history.strip():
        sections.append(f"## Conversation History\n\n{history}\n")
    sections.append(f"## Knowledge Base\n\n{context}\n")
    sections.append(f"## Question\n\n{question}\n")
    sections.append(
        "Provide an accurate, helpful answer that takes the context of the "
        "conversation history into account:"
    )
    return "\n".join(sections)


# ---------------------------------------------------------------------------
# Role-play
# ---------------------------------------------------------------------------


def build_roleplay_context(
    *,
    character_name: str,
    system_prompt: str,
    user_message: str,
    background: str | None = None,
    speaking_style: str | None = None,
    fragments: Sequence[RetrievalCandidate] = (),
    history: str = "",
) -> str:
    """Assemble the per-turn conversational context for a character."""
    parts = [f"System prompt:\n{system_prompt}\n"]
    if background:
        parts.append(f"Character background:\n{background}\n")
    if fragments:
        parts.append(
            "Relevant knowledge base content:\n"
            f"{format_fragments(fragments, bullet='- ')}\n"
        )
    if history.strip():
        parts.append(f"Conversation history:\n{history}\n")
    parts.append(f"Current user message:\n{user_message}\n")

    instruction = f"Reply to the user as {character_name}."
    if speaking_style:
        instruction += f" Speaking style: {speaking_style}"
    parts.append(instruction)
    return "\n".join(parts)


def build_roleplay_prompt(
    context: str,
    *,
    system_prompt: str,
    personality: str | None = None,
    speaking_style: str | None = None,
    background: str | None = None,
    restrictions: str | None = None,
) -> str:
    """Wrap a role-play context with the character sheet and instructions."""
    sheet = [f"# Character\n{system_prompt}\n"]
    for heading, text in (
        ("Personality", personality),
        ("Speaking Style", speaking_style),
        ("Background", background),
        ("Restrictions", restrictions),
    ):
        if text:
            sheet.append(f"## {heading}\n{text}\n")

    return (
        "\n".join(sheet)
        + f"\n# Conversation Context\n{context}\n\n"
        "# Instructions\n"
        "Reply strictly in character and stay consistent with the settings "
        "above. Keep the reply natural; never mention being an AI or "
        "playing a role. Reply directly as the character, without a name "
        "prefix.\n"
    )


# ---------------------------------------------------------------------------
# Profile generation
# ---------------------------------------------------------------------------


def build_base_context(
    name: str, description: str, fragments: Sequence[RetrievalCandidate]
) -> str:
    """Name, description and every retrieved fragment as a bulleted list."""
    return (
        f"Character name: {name}\n"
        f"Character description: {description}\n\n"
        "Relevant knowledge base content:\n"
        f"{format_fragments(fragments, bullet='- ')}\n"
    )


def build_generation_prompt(
    *,
    task: str,
    name: str,
    description: str,
    knowledge: str,
    instructions: str,
    extra: Sequence[tuple[str, str]] = (),
) -> str:
    """Build one field or section generation prompt.

    *task* is the opening line, *extra* adds ``label: value`` lines after
    the description (e.g. an already generated speaking style), and
    *instructions* closes the prompt.
    """
    header = [f"Character name: {name}", f"Character description: {description}"]
    header.extend(f"{label}: {value}" for label, value in extra)
    return (
        f"{task}\n\n"
        + "\n".join(header)
        + f"\n\nRelevant knowledge base content:\n{knowledge}\n\n"
        + instructions.strip()
        + "\n"
    )


def build_minimal_system_prompt(name: str, description: str, context: str) -> str:
    """Last-resort system prompt; the context is truncated to 1000 characters."""
    if len(context) > 1000:
        context = context[:1000] + "..."
    return (
        f"You are {name}, {description}. Role-play based on the following "
        f"background information:\n\n{context}\n\n"
        "Always stay in character and respond in a way that fits the character."
    )
