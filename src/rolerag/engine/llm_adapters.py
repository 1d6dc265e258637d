"""Language-model capability protocols, concrete adapters and factories."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Sequence
from typing import Protocol
from typing import runtime_checkable
from urllib.error import HTTPError
from urllib.error import URLError
from urllib.request import Request
from urllib.request import urlopen

from rolerag.config import EmbeddingConfig
from rolerag.config import LLMConfig
from rolerag.errors import LLMError

# ---------------------------------------------------------------------------
# Capability protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class LLMAdapter(Protocol):
    """Chat-completion capability.

    Implementations raise ``LLMError`` (or any exception) on failure;
    callers apply their own fallback policy.
    """

    async def complete(
        self,
        prompt: str,
        *,
        temperature: float = 0.7,
        max_tokens: int = 1000,
        timeout_seconds: float = 60.0,
    ) -> str: ...


@runtime_checkable
class EmbeddingAdapter(Protocol):
    """Text embedding capability."""

    async def embed(self, text: str) -> list[float]: ...


# ---------------------------------------------------------------------------
# No-op adapters
# ---------------------------------------------------------------------------


class NoopLLMAdapter(LLMAdapter):
    """Deterministic adapter that always returns an empty completion."""

    async def complete(
        self,
        prompt: str,
        *,
        temperature: float = 0.7,
        max_tokens: int = 1000,
        timeout_seconds: float = 60.0,
    ) -> str:
        del prompt, temperature, max_tokens, timeout_seconds
        return ""


class NoopEmbeddingAdapter(EmbeddingAdapter):
    """Returns an all-zero vector of the configured dimensionality."""

    def __init__(self, dimensions: int = 1536) -> None:
        self._dimensions = dimensions

    async def embed(self, text: str) -> list[float]:
        del text
        return [0.0] * self._dimensions


# ---------------------------------------------------------------------------
# OpenAI-compatible HTTP adapters
# ---------------------------------------------------------------------------


class _OpenAICompatibleClient:
    """Shared JSON-over-HTTP plumbing for the OpenAI-compatible API."""

    def __init__(self, *, api_key: str, base_url: str) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")

    def _post_json(self, path: str, payload: dict, *, timeout_seconds: float) -> dict:
        request = Request(
            url=f"{self._base_url}{path}",
            data=json.dumps(payload).encode("utf-8"),
            headers={
                "Authorization": f"Bearer {self._api_key}",
                "Content-Type": "application/json",
            },
            method="POST",
        )
        try:
            with urlopen(request, timeout=timeout_seconds) as response:
                raw = response.read().decode("utf-8")
        except HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="replace")
            raise LLMError(f"provider HTTP {exc.code}: {detail[:200]}") from exc
        except URLError as exc:
            raise LLMError(f"provider network error: {exc.reason}") from exc
        except OSError as exc:
            raise LLMError(f"provider IO error: {exc}") from exc

        try:
            data = json.loads(raw)
        except ValueError as exc:
            raise LLMError("provider returned a non-JSON body") from exc
        if not isinstance(data, dict):
            raise LLMError("provider returned an unexpected JSON payload")
        return data


class OpenAICompatibleLLMAdapter(_OpenAICompatibleClient, LLMAdapter):
    """OpenAI-compatible chat-completions adapter."""

    def __init__(
        self,
        *,
        model: str,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
    ) -> None:
        super().__init__(api_key=api_key, base_url=base_url)
        self._model = model

    async def complete(
        self,
        prompt: str,
        *,
        temperature: float = 0.7,
        max_tokens: int = 1000,
        timeout_seconds: float = 60.0,
    ) -> str:
        return await asyncio.to_thread(
            self._complete_sync,
            prompt,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout_seconds=timeout_seconds,
        )

    def _complete_sync(
        self,
        prompt: str,
        *,
        temperature: float,
        max_tokens: int,
        timeout_seconds: float,
    ) -> str:
        data = self._post_json(
            "/chat/completions",
            {
                "model": self._model,
                "messages": [{"role": "user", "content": prompt}],
                "temperature": temperature,
                "max_tokens": max_tokens,
            },
            timeout_seconds=timeout_seconds,
        )
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise LLMError(
                "provider response missing choices[0].message.content"
            ) from exc

        if isinstance(content, str):
            return content
        raise LLMError("provider response content must be a string")


class OpenAICompatibleEmbeddingAdapter(_OpenAICompatibleClient, EmbeddingAdapter):
    """OpenAI-compatible ``/embeddings`` adapter."""

    def __init__(
        self,
        *,
        model: str,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        timeout_seconds: float = 30.0,
    ) -> None:
        super().__init__(api_key=api_key, base_url=base_url)
        self._model = model
        self._timeout_seconds = timeout_seconds

    async def embed(self, text: str) -> list[float]:
        return await asyncio.to_thread(self._embed_sync, text)

    def _embed_sync(self, text: str) -> list[float]:
        data = self._post_json(
            "/embeddings",
            {"model": self._model, "input": text},
            timeout_seconds=self._timeout_seconds,
        )
        try:
            vector = data["data"][0]["embedding"]
        except (KeyError, IndexError, TypeError) as exc:
            raise LLMError("provider response missing data[0].embedding") from exc
        if not isinstance(vector, Sequence) or isinstance(vector, str):
            raise LLMError("provider embedding must be a list of numbers")
        return [float(value) for value in vector]


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


def build_llm_adapter(config: LLMConfig) -> LLMAdapter:
    """Create a concrete completion adapter from ``LLMConfig``."""

    provider = config.provider.strip().lower()
    if provider == "openai":
        if not config.api_key:
            raise ValueError("llm_config.api_key is required when provider='openai'")
        return OpenAICompatibleLLMAdapter(
            model=config.model,
            api_key=config.api_key,
            base_url=config.base_url,
        )
    if provider == "noop":
        return NoopLLMAdapter()
    raise ValueError(
        f"Unsupported llm_config.provider '{config.provider}'. "
        "Supported providers: openai, noop."
    )


def build_embedding_adapter(config: EmbeddingConfig) -> EmbeddingAdapter:
    """Create a concrete embedding adapter from ``EmbeddingConfig``."""

    provider = config.provider.strip().lower()
    if provider == "openai":
        if not config.api_key:
            raise ValueError(
                "embedding_config.api_key is required when provider='openai'"
            )
        return OpenAICompatibleEmbeddingAdapter(
            model=config.model,
            api_key=config.api_key,
            base_url=config.base_url,
            timeout_seconds=config.timeout_seconds,
        )
    if provider == "noop":
        return NoopEmbeddingAdapter(config.dimensions)
    raise ValueError(
        f"Unsupported embedding_config.provider '{config.provider}'. "
        "Supported providers: openai, noop."
    )
