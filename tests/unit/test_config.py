"""Unit tests for configuration dataclasses."""

from dataclasses import FrozenInstanceError

import pytest

from rolerag.config import ConversationConfig
from rolerag.config import EmbeddingConfig
from rolerag.config import HybridSearchConfig
from rolerag.config import LLMConfig
from rolerag.config import ProfileTemplateConfig
from rolerag.config import RerankConfig
from rolerag.config import RolePlayConfig

# ---------------------------------------------------------------------------
# LLMConfig / EmbeddingConfig
# ---------------------------------------------------------------------------


class TestLLMConfig:
    def test_defaults(self):
        cfg = LLMConfig()
        assert cfg.provider == "openai"
        assert cfg.model == "gpt-4"
        assert cfg.api_key is None
        assert cfg.base_url == "https://api.openai.com/v1"
        assert cfg.temperature == 0.7
        assert cfg.max_tokens == 1000
        assert cfg.timeout_seconds == 60.0

    def test_rejects_non_positive_max_tokens(self):
        with pytest.raises(ValueError, match="max_tokens"):
            LLMConfig(max_tokens=0)

    def test_frozen(self):
        cfg = LLMConfig()
        with pytest.raises(FrozenInstanceError):
            cfg.model = "other"  # type: ignore[misc]


class TestEmbeddingConfig:
    def test_rejects_non_positive_dimensions(self):
        with pytest.raises(ValueError, match="dimensions"):
            EmbeddingConfig(dimensions=0)


# ---------------------------------------------------------------------------
# Retrieval
# ---------------------------------------------------------------------------


class TestHybridSearchConfig:
    def test_defaults(self):
        cfg = HybridSearchConfig()
        assert cfg.enabled is False
        assert cfg.vector_weight == 0.7
        assert cfg.keyword_weight == 0.3
        assert cfg.max_results == 10

    def test_rejects_negative_weight(self):
        with pytest.raises(ValueError, match="keyword_weight"):
            HybridSearchConfig(keyword_weight=-0.1)

    def test_rejects_non_positive_max_results(self):
        with pytest.raises(ValueError, match="max_results"):
            HybridSearchConfig(max_results=0)


class TestRerankConfig:
    def test_defaults(self):
        cfg = RerankConfig()
        assert cfg.enabled is False
        assert cfg.relevance_weight == 0.9
        assert cfg.diversity_weight == 0.1
        assert cfg.max_rerank_candidates == 50

    def test_rejects_negative_weight(self):
        with pytest.raises(ValueError, match="diversity_weight"):
            RerankConfig(diversity_weight=-1)


# ---------------------------------------------------------------------------
# Conversation
# ---------------------------------------------------------------------------


class TestConversationConfig:
    def test_defaults(self):
        cfg = ConversationConfig()
        assert cfg.enabled is True
        assert cfg.max_conversation_turns == 10
        assert cfg.ttl_hours == 24
        assert cfg.ttl_seconds == 86400
        assert cfg.max_history_tokens is None

    def test_rejects_non_positive_turns(self):
        with pytest.raises(ValueError, match="max_conversation_turns"):
            ConversationConfig(max_conversation_turns=0)

    def test_rejects_non_positive_token_budget(self):
        with pytest.raises(ValueError, match="max_history_tokens"):
            ConversationConfig(max_history_tokens=0)


class TestRolePlayConfig:
    def test_defaults(self):
        cfg = RolePlayConfig()
        assert cfg.max_history_length == 20
        assert cfg.history_turns_in_prompt == 10
        assert cfg.fragments_per_turn == 5
        assert cfg.query_history_messages == 3
        assert cfg.use_rag is True

    def test_allows_zero_query_history(self):
        assert RolePlayConfig(query_history_messages=0).query_history_messages == 0

    def test_rejects_non_positive_fragments(self):
        with pytest.raises(ValueError, match="fragments_per_turn"):
            RolePlayConfig(fragments_per_turn=0)


# ---------------------------------------------------------------------------
# Profile template
# ---------------------------------------------------------------------------


class TestProfileTemplateConfig:
    def test_defaults(self):
        cfg = ProfileTemplateConfig()
        assert cfg.enabled is True
        assert cfg.template_type == "standard"
        assert cfg.example_count == 3

    def test_minimal_preset_drops_sections(self):
        cfg = ProfileTemplateConfig.preset("minimal")
        assert cfg.include_background is False
        assert cfg.include_workflow is False
        assert cfg.example_count == 2

    def test_detailed_preset(self):
        cfg = ProfileTemplateConfig.preset("detailed")
        assert cfg.template_type == "detailed"
        assert cfg.example_count == 5

    def test_unknown_preset(self):
        with pytest.raises(ValueError, match="Unknown template preset"):
            ProfileTemplateConfig.preset("fancy")

    @pytest.mark.parametrize("count", [0, 11])
    def test_rejects_example_count_out_of_range(self, count):
        with pytest.raises(ValueError, match="example_count"):
            ProfileTemplateConfig(example_count=count)

    def test_rejects_unknown_template_type(self):
        with pytest.raises(ValueError, match="template_type"):
            ProfileTemplateConfig(template_type="exotic")

    def test_with_overrides_revalidates(self):
        cfg = ProfileTemplateConfig().with_overrides(custom_prefix="Hi")
        assert cfg.custom_prefix == "Hi"
        with pytest.raises(ValueError):
            ProfileTemplateConfig().with_overrides(example_count=42)

    def test_with_overrides_rejects_unknown_option(self):
        with pytest.raises(ValueError, match="favourite_colour"):
            ProfileTemplateConfig().with_overrides(favourite_colour="blue")
