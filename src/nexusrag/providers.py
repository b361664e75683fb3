"""Provider configuration variants and the shared HTTP plumbing.

Each provider kind is a small frozen dataclass carrying only the fields its
protocol needs. The embedding and chat strategies (``index.embedder`` and
``chat.llm``) take one of these as an explicit argument; nothing here reads
global state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Union

import httpx

from .errors import (
    ConfigurationError,
    ConnectivityError,
    MalformedResponseError,
    ProviderError,
    ResourceNotFoundError,
)


logger = logging.getLogger(__name__)

OPENAI_BASE_URL = "https://api.openai.com/v1"
OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_OLLAMA_URL = "http://localhost:11434"

CHECK_TIMEOUT_S = 3.0
OLLAMA_EMBED_TIMEOUT_S = 20.0
HOSTED_EMBED_TIMEOUT_S = 60.0
CHAT_TIMEOUT_S = 120.0


@dataclass(frozen=True)
class OpenAIProvider:
    api_key: str
    model: str = ""
    base_url: str = OPENAI_BASE_URL
    kind: str = "openai"


@dataclass(frozen=True)
class OpenRouterProvider:
    api_key: str
    model: str = ""
    base_url: str = OPENROUTER_BASE_URL
    referer: str = "http://localhost"
    app_title: str = "Nexus RAG"
    kind: str = "openrouter"


@dataclass(frozen=True)
class OllamaProvider:
    base_url: str = DEFAULT_OLLAMA_URL
    model: str = ""
    kind: str = "ollama"


@dataclass(frozen=True)
class FastEmbedProvider:
    # In-process embeddings; no network involved.
    model: str = "BAAI/bge-small-en-v1.5"
    kind: str = "fastembed"


ProviderConfig = Union[OpenAIProvider, OpenRouterProvider, OllamaProvider, FastEmbedProvider]


def require_key(api_key: str, provider: str) -> str:
    if not api_key or not api_key.strip():
        raise ConfigurationError(f"No API key configured for {provider}.", provider=provider)
    return api_key.strip()


def connectivity_hint(provider: str, base_url: str) -> str:
    if provider == "ollama":
        return f"Fix: start Ollama (`ollama serve`) and check the URL ({base_url})."
    return f"Fix: check your network connection and that {base_url} is reachable."


def post_json(
    url: str,
    payload: dict[str, Any],
    *,
    provider: str,
    headers: dict[str, str] | None = None,
    timeout_s: float,
    transport: httpx.BaseTransport | None = None,
) -> httpx.Response:
    """POST a JSON body and return the response, mapping transport failures.

    Timeouts and connection failures become ``ConnectivityError``; the caller
    handles status codes and body parsing since those are provider-specific.
    """
    logger.debug("POST %s (provider=%s)", url, provider)
    try:
        with httpx.Client(timeout=timeout_s, transport=transport) as client:
            return client.post(url, json=payload, headers=headers or {})
    except httpx.TimeoutException as e:
        logger.warning("%s timed out after %.0fs: %s", provider, timeout_s, url)
        raise ConnectivityError(
            f"Timed out talking to {provider} at {url}.",
            provider=provider,
            hint=connectivity_hint(provider, url),
        ) from e
    except httpx.TransportError as e:
        logger.warning("%s unreachable: %s (%s)", provider, url, e)
        raise ConnectivityError(
            f"Failed to connect to {provider} at {url}. ({e})",
            provider=provider,
            hint=connectivity_hint(provider, url),
        ) from e


def decode_json(r: httpx.Response, *, provider: str) -> Any:
    try:
        return r.json()
    except ValueError as e:
        raise MalformedResponseError(
            f"{provider} returned a non-JSON body: {r.text[:200]}", provider=provider
        ) from e


def raise_for_status(r: httpx.Response, *, provider: str, model: str | None = None) -> None:
    if r.is_success:
        return
    if provider == "ollama" and r.status_code == 404 and model:
        raise ResourceNotFoundError(
            f"Model '{model}' was not found on Ollama.",
            provider=provider,
            command=f"ollama pull {model}",
        )
    detail = _error_detail(r)
    raise ProviderError(f"{provider} error {r.status_code}: {detail}", provider=provider, status_code=r.status_code)


def _error_detail(r: httpx.Response) -> str:
    try:
        data = r.json()
    except ValueError:
        return r.text[:300] or r.reason_phrase
    if isinstance(data, dict):
        err = data.get("error")
        if isinstance(err, dict) and isinstance(err.get("message"), str):
            return err["message"]
        if isinstance(err, str):
            return err
    return r.reason_phrase or str(data)[:300]


def check_ollama_connection(
    base_url: str,
    *,
    timeout_s: float = CHECK_TIMEOUT_S,
    transport: httpx.BaseTransport | None = None,
) -> list[str]:
    """Return installed model names; raise ``ConnectivityError`` if unreachable."""
    url = f"{base_url.rstrip('/')}/api/tags"
    try:
        with httpx.Client(timeout=timeout_s, transport=transport) as client:
            r = client.get(url)
    except httpx.TransportError as e:
        raise ConnectivityError(
            f"Ollama not reachable at {base_url}. ({e})",
            provider="ollama",
            hint=connectivity_hint("ollama", base_url),
        ) from e
    raise_for_status(r, provider="ollama")
    data = decode_json(r, provider="ollama")
    if not isinstance(data, dict):
        raise MalformedResponseError(f"Unexpected Ollama response: {data}", provider="ollama")
    return [m.get("name") for m in (data.get("models") or []) if isinstance(m, dict) and m.get("name")]
