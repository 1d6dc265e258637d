"""Application configuration dataclasses.

Frozen dataclasses with sensible defaults for each subsystem.
No env-var loading or YAML parsing, just plain defaults that can
be overridden at construction time.  Malformed values are rejected in
``__post_init__`` so a bad configuration fails before any side effect.
"""

from __future__ import annotations

from dataclasses import dataclass
from dataclasses import fields
from dataclasses import replace


def _require_non_negative(name: str, value: float) -> None:
    if value < 0:
        raise ValueError(f"{name} must be >= 0, got {value!r}")


def _require_positive(name: str, value: float) -> None:
    if value <= 0:
        raise ValueError(f"{name} must be > 0, got {value!r}")


@dataclass(frozen=True)
class LLMConfig:
    """Chat-completion provider settings."""

    provider: str = "openai"
    model: str = "gpt-4"
    api_key: str | None = None
    base_url: str = "https://api.openai.com/v1"
    temperature: float = 0.7
    max_tokens: int = 1000
    timeout_seconds: float = 60.0

    def __post_init__(self) -> None:
        _require_positive("max_tokens", self.max_tokens)
        _require_positive("timeout_seconds", self.timeout_seconds)


@dataclass(frozen=True)
class EmbeddingConfig:
    """Embedding provider settings."""

    provider: str = "openai"
    model: str = "text-embedding-3-small"
    api_key: str | None = None
    base_url: str = "https://api.openai.com/v1"
    dimensions: int = 1536
    timeout_seconds: float = 30.0

    def __post_init__(self) -> None:
        _require_positive("dimensions", self.dimensions)
        _require_positive("timeout_seconds", self.timeout_seconds)


@dataclass(frozen=True)
class HybridSearchConfig:
    """Weights and limits for vector + keyword score fusion.

    Weights do not have to sum to 1.0, but fused scores are only
    comparable across configurations when they do.
    """

    enabled: bool = False
    vector_weight: float = 0.7
    keyword_weight: float = 0.3
    max_results: int = 10

    def __post_init__(self) -> None:
        _require_non_negative("vector_weight", self.vector_weight)
        _require_non_negative("keyword_weight", self.keyword_weight)
        _require_positive("max_results", self.max_results)


@dataclass(frozen=True)
class RerankConfig:
    """Second-pass relevance/diversity reranking."""

    enabled: bool = False
    relevance_weight: float = 0.9
    diversity_weight: float = 0.1
    # Diversity is quadratic in the candidate count.
    max_rerank_candidates: int = 50

    def __post_init__(self) -> None:
        _require_non_negative("relevance_weight", self.relevance_weight)
        _require_non_negative("diversity_weight", self.diversity_weight)
        _require_positive("max_rerank_candidates", self.max_rerank_candidates)


@dataclass(frozen=True)
class ConversationConfig:
    """Session cache settings for the conversational context manager."""

    enabled: bool = True
    max_conversation_turns: int = 10
    ttl_hours: int = 24
    max_history_tokens: int | None = None

    def __post_init__(self) -> None:
        _require_positive("max_conversation_turns", self.max_conversation_turns)
        _require_positive("ttl_hours", self.ttl_hours)
        if self.max_history_tokens is not None:
            _require_positive("max_history_tokens", self.max_history_tokens)

    @property
    def ttl_seconds(self) -> int:
        return self.ttl_hours * 3600


_TEMPLATE_TYPES = ("standard", "minimal", "detailed", "custom")


@dataclass(frozen=True)
class ProfileTemplateConfig:
    """Controls the structured system-prompt template of a character profile."""

    enabled: bool = True
    template_type: str = "standard"
    include_basic_info: bool = True
    include_personality: bool = True
    include_workflow: bool = True
    include_speaking_style: bool = True
    include_background: bool = True
    include_interaction_rules: bool = True
    include_examples: bool = True
    example_count: int = 3
    custom_prefix: str = ""
    custom_suffix: str = ""

    def __post_init__(self) -> None:
        if self.template_type not in _TEMPLATE_TYPES:
            raise ValueError(
                f"template_type must be one of {', '.join(_TEMPLATE_TYPES)}, "
                f"got {self.template_type!r}"
            )
        if not 1 <= self.example_count <= 10:
            raise ValueError(
                f"example_count must be between 1 and 10, got {self.example_count!r}"
            )

    @classmethod
    def standard(cls) -> ProfileTemplateConfig:
        return cls()

    @classmethod
    def minimal(cls) -> ProfileTemplateConfig:
        return cls(
            template_type="minimal",
            include_background=False,
            include_workflow=False,
            example_count=2,
        )

    @classmethod
    def detailed(cls) -> ProfileTemplateConfig:
        return cls(template_type="detailed", example_count=5)

    @classmethod
    def preset(cls, name: str) -> ProfileTemplateConfig:
        """Return a named preset (``standard``, ``minimal`` or ``detailed``)."""
        presets = {
            "standard": cls.standard,
            "minimal": cls.minimal,
            "detailed": cls.detailed,
        }
        try:
            return presets[name]()
        except KeyError:
            raise ValueError(f"Unknown template preset {name!r}") from None

    def with_overrides(self, **overrides: object) -> ProfileTemplateConfig:
        known = {f.name for f in fields(self)}
        unknown = sorted(set(overrides) - known)
        if unknown:
            raise ValueError(f"Unknown template option(s): {', '.join(unknown)}")
        return replace(self, **overrides)


@dataclass(frozen=True)
class RolePlayConfig:
    """Per-session defaults for role-play conversations."""

    max_history_length: int = 20
    history_turns_in_prompt: int = 10
    fragments_per_turn: int = 5
    query_history_messages: int = 3
    use_rag: bool = True
    temperature: float = 0.7
    max_tokens: int = 1000

    def __post_init__(self) -> None:
        _require_positive("max_history_length", self.max_history_length)
        _require_positive("history_turns_in_prompt", self.history_turns_in_prompt)
        _require_positive("fragments_per_turn", self.fragments_per_turn)
        _require_non_negative("query_history_messages", self.query_history_messages)
        _require_positive("max_tokens", self.max_tokens)
