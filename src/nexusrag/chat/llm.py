from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from ..errors import MalformedResponseError, ValidationError
from ..providers import (
    CHAT_TIMEOUT_S,
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


DEFAULT_TEMPERATURE = 0.3


@dataclass(frozen=True)
class ChatMessage:
    role: str
    content: str

    def to_dict(self) -> dict[str, Any]:
        return {"role": self.role, "content": self.content}


class ChatClient(Protocol):
    def chat(self, messages: list[ChatMessage]) -> str: ...


class OpenAIChatClient:
    provider = "openai"
    default_model = "gpt-3.5-turbo"

    def __init__(
        self,
        config: OpenAIProvider,
        *,
        timeout_s: float = CHAT_TIMEOUT_S,
        temperature: float | None = DEFAULT_TEMPERATURE,
        transport: httpx.BaseTransport | None = None,
    ):
        self.config = config
        self.model = config.model or self.default_model
        self.timeout_s = float(timeout_s)
        self.temperature = temperature
        self.transport = transport

    def _headers(self, api_key: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {api_key}"}

    def _payload(self, messages: list[ChatMessage]) -> dict[str, Any]:
        payload: dict[str, Any] = {"model": self.model, "messages": [m.to_dict() for m in messages]}
        if self.temperature is not None:
            payload["temperature"] = self.temperature
        return payload

    def chat(self, messages: list[ChatMessage]) -> str:
        api_key = require_key(self.config.api_key, self.provider)
        r = post_json(
            f"{self.config.base_url.rstrip('/')}/chat/completions",
            self._payload(messages),
            provider=self.provider,
            headers=self._headers(api_key),
            timeout_s=self.timeout_s,
            transport=self.transport,
        )
        raise_for_status(r, provider=self.provider)
        data = decode_json(r, provider=self.provider)

        # {"choices": [{"message": {"content": "..."}}]}
        choices = data.get("choices") if isinstance(data, dict) else None
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            raise MalformedResponseError(f"Unexpected {self.provider} response: {str(data)[:200]}", provider=self.provider)
        msg = choices[0].get("message")
        content = msg.get("content") if isinstance(msg, dict) else None
        if not isinstance(content, str):
            raise MalformedResponseError(f"Unexpected {self.provider} response: {str(data)[:200]}", provider=self.provider)
        return content


class OpenRouterChatClient(OpenAIChatClient):
    provider = "openrouter"
    default_model = "openai/gpt-3.5-turbo"

    def __init__(
        self,
        config: OpenRouterProvider,
        *,
        timeout_s: float = CHAT_TIMEOUT_S,
        transport: httpx.BaseTransport | None = None,
    ):
        # OpenRouter uses the model's default temperature.
        super().__init__(config, timeout_s=timeout_s, temperature=None, transport=transport)  # type: ignore[arg-type]

    def _headers(self, api_key: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {api_key}",
            "HTTP-Referer": self.config.referer,
            "X-Title": self.config.app_title,
        }


class OllamaChatClient:
    provider = "ollama"
    default_model = "llama3"

    def __init__(
        self,
        config: OllamaProvider,
        *,
        timeout_s: float = CHAT_TIMEOUT_S,
        options: dict[str, Any] | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = config.base_url.rstrip("/")
        self.model = config.model or self.default_model
        self.timeout_s = float(timeout_s)
        self.options = dict(options) if options is not None else {"temperature": DEFAULT_TEMPERATURE}
        self.transport = transport

    def chat(self, messages: list[ChatMessage]) -> str:
        payload: dict[str, Any] = {
            "model": self.model,
            "stream": False,
            "messages": [m.to_dict() for m in messages],
        }
        if self.options:
            payload["options"] = self.options

        r = post_json(
            f"{self.base_url}/api/chat",
            payload,
            provider=self.provider,
            timeout_s=self.timeout_s,
            transport=self.transport,
        )
        raise_for_status(r, provider=self.provider, model=self.model)

        data = decode_json(r, provider=self.provider)
        msg = (data.get("message") if isinstance(data, dict) else None) or {}
        content = msg.get("content") if isinstance(msg, dict) else None
        if not isinstance(content, str):
            raise MalformedResponseError(f"Unexpected Ollama response: {str(data)[:200]}", provider=self.provider)
        return content


def get_chat_client(provider: ProviderConfig, *, transport: httpx.BaseTransport | None = None) -> ChatClient:
    if isinstance(provider, OpenRouterProvider):
        return OpenRouterChatClient(provider, transport=transport)
    if isinstance(provider, OpenAIProvider):
        return OpenAIChatClient(provider, transport=transport)
    if isinstance(provider, OllamaProvider):
        return OllamaChatClient(provider, transport=transport)
    if isinstance(provider, FastEmbedProvider):
        raise ValidationError("fastembed only provides embeddings; pick openai, openrouter or ollama for chat.")
    raise ValidationError(f"Unsupported chat provider: {provider!r}")
