"""Engine domain: similarity search, score fusion, reranking and model adapters."""

from rolerag.engine.fusion import fuse_results
from rolerag.engine.fusion import rerank_results
from rolerag.engine.hybrid import HybridRetrievalEngine
from rolerag.engine.llm_adapters import build_embedding_adapter
from rolerag.engine.llm_adapters import build_llm_adapter
from rolerag.engine.llm_adapters import EmbeddingAdapter
from rolerag.engine.llm_adapters import LLMAdapter
from rolerag.engine.llm_adapters import NoopEmbeddingAdapter
from rolerag.engine.llm_adapters import NoopLLMAdapter
from rolerag.engine.llm_adapters import OpenAICompatibleEmbeddingAdapter
from rolerag.engine.llm_adapters import OpenAICompatibleLLMAdapter
from rolerag.engine.schemas import FusedResult
from rolerag.engine.schemas import RetrievalCandidate
from rolerag.engine.search import SearchBackend
from rolerag.engine.search import SimilaritySearchAdapter

__all__ = [
    "EmbeddingAdapter",
    "FusedResult",
    "HybridRetrievalEngine",
    "LLMAdapter",
    "NoopEmbeddingAdapter",
    "NoopLLMAdapter",
    "OpenAICompatibleEmbeddingAdapter",
    "OpenAICompatibleLLMAdapter",
    "RetrievalCandidate",
    "SearchBackend",
    "SimilaritySearchAdapter",
    "build_embedding_adapter",
    "build_llm_adapter",
    "fuse_results",
    "rerank_results",
]
