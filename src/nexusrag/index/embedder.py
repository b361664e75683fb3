from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx
import numpy as np

from ..errors import MalformedResponseError, ProviderError, ValidationError
from ..providers import (
    HOSTED_EMBED_TIMEOUT_S,
    OLLAMA_EMBED_TIMEOUT_S,
    FastEmbedProvider,
    OllamaProvider,
    OpenAIProvider,
    OpenRouterProvider,
    ProviderConfig,
    decode_json,
    post_json,
    raise_for_status,
    require_key,
)


logger = logging.getLogger(__name__)


class Embedder(Protocol):
    def embed(self, text: str) -> list[float]: ...


def _as_vector(raw: Any, *, provider: str) -> list[float]:
    if not isinstance(raw, list) or not raw:
        raise MalformedResponseError(f"{provider} returned no embedding vector.", provider=provider)
    try:
        return [float(x) for x in raw]
    except (TypeError, ValueError) as e:
        raise MalformedResponseError(f"{provider} returned a non-numeric embedding.", provider=provider) from e


def _parse_openai_style(data: Any, *, provider: str) -> list[float]:
    # {"data": [{"embedding": [...]}, ...]}
    if not isinstance(data, dict):
        raise MalformedResponseError(f"Unexpected {provider} response: {str(data)[:200]}", provider=provider)
    items = data.get("data")
    if not isinstance(items, list) or not items or not isinstance(items[0], dict):
        raise MalformedResponseError(f"Unexpected {provider} response: {str(data)[:200]}", provider=provider)
    return _as_vector(items[0].get("embedding"), provider=provider)


class OpenAIEmbedder:
    provider = "openai"
    default_model = "text-embedding-3-small"

    def __init__(
        self,
        config: OpenAIProvider,
        *,
        timeout_s: float = HOSTED_EMBED_TIMEOUT_S,
        transport: httpx.BaseTransport | None = None,
    ):
        self.config = config
        self.model = config.model or self.default_model
        self.timeout_s = float(timeout_s)
        self.transport = transport

    def _headers(self, api_key: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {api_key}"}

    def embed(self, text: str) -> list[float]:
        api_key = require_key(self.config.api_key, self.provider)
        r = post_json(
            f"{self.config.base_url.rstrip('/')}/embeddings",
            {"input": text, "model": self.model},
            provider=self.provider,
            headers=self._headers(api_key),
            timeout_s=self.timeout_s,
            transport=self.transport,
        )
        raise_for_status(r, provider=self.provider)
        return _parse_openai_style(decode_json(r, provider=self.provider), provider=self.provider)


class OpenRouterEmbedder(OpenAIEmbedder):
    provider = "openrouter"
    default_model = "openai/text-embedding-3-small"

    def __init__(
        self,
        config: OpenRouterProvider,
        *,
        timeout_s: float = HOSTED_EMBED_TIMEOUT_S,
        transport: httpx.BaseTransport | None = None,
    ):
        super().__init__(config, timeout_s=timeout_s, transport=transport)  # type: ignore[arg-type]

    def _headers(self, api_key: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {api_key}",
            "HTTP-Referer": self.config.referer,
            "X-Title": self.config.app_title,
        }


class OllamaEmbedder:
    provider = "ollama"
    default_model = "nomic-embed-text"

    def __init__(
        self,
        config: OllamaProvider,
        *,
        timeout_s: float = OLLAMA_EMBED_TIMEOUT_S,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = config.base_url.rstrip("/")
        self.model = config.model or self.default_model
        self.timeout_s = float(timeout_s)
        self.transport = transport

    def embed(self, text: str) -> list[float]:
        r = post_json(
            f"{self.base_url}/api/embeddings",
            {"model": self.model, "prompt": text},
            provider=self.provider,
            timeout_s=self.timeout_s,
            transport=self.transport,
        )
        raise_for_status(r, provider=self.provider, model=self.model)
        data = decode_json(r, provider=self.provider)
        if not isinstance(data, dict):
            raise MalformedResponseError(f"Unexpected Ollama response: {str(data)[:200]}", provider=self.provider)
        return _as_vector(data.get("embedding"), provider=self.provider)


class FastEmbedEmbedder:
    provider = "fastembed"

    def __init__(self, config: FastEmbedProvider):
        # Import here so the rest of the package works without fastembed installed.
        try:
            from fastembed import TextEmbedding  # type: ignore
        except ImportError as e:
            raise ProviderError(
                "fastembed is not installed. Install: `pip install -e '.[local]'`", provider=self.provider
            ) from e

        self.model = config.model
        self._model = TextEmbedding(model_name=config.model)

    def embed(self, text: str) -> list[float]:
        vecs = list(self._model.embed([text]))
        if not vecs:
            raise MalformedResponseError("fastembed returned no vectors.", provider=self.provider)
        return np.asarray(vecs[0], dtype=np.float32).astype(float).tolist()


def get_embedder(provider: ProviderConfig, *, transport: httpx.BaseTransport | None = None) -> Embedder:
    """Build the embedding strategy for ``provider``."""
    if isinstance(provider, OpenRouterProvider):
        return OpenRouterEmbedder(provider, transport=transport)
    if isinstance(provider, OpenAIProvider):
        return OpenAIEmbedder(provider, transport=transport)
    if isinstance(provider, OllamaProvider):
        return OllamaEmbedder(provider, transport=transport)
    if isinstance(provider, FastEmbedProvider):
        return FastEmbedEmbedder(provider)
    raise ValidationError(f"Unsupported embedding provider: {provider!r}")
