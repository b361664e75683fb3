from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field, replace
from typing import Any

from dotenv import load_dotenv

from .errors import ValidationError
from .providers import (
    DEFAULT_OLLAMA_URL,
    FastEmbedProvider,
    OllamaProvider,
    OpenAIProvider,
    OpenRouterProvider,
    ProviderConfig,
)


load_dotenv()


CHAT_PROVIDERS = ("openai", "openrouter", "ollama")
EMBEDDING_PROVIDERS = ("openai", "openrouter", "local", "fastembed")

DEFAULT_SYSTEM_PROMPT = "You are Nexus, a sophisticated AI assistant."


@dataclass(frozen=True)
class Settings:
    # Default DB path used by the CLI and the web API.
    db_path: str = os.getenv("NEXUSRAG_DB_PATH", "./data/nexus.db")

    # Embeddings ("local" means Ollama)
    embed_provider: str = os.getenv("NEXUSRAG_EMBED_PROVIDER", "local")
    embed_model: str = os.getenv("NEXUSRAG_EMBED_MODEL", "nomic-embed-text")

    # Chat
    chat_provider: str = os.getenv("NEXUSRAG_CHAT_PROVIDER", "ollama")
    chat_model: str = os.getenv("NEXUSRAG_CHAT_MODEL", "")

    # Provider endpoints/credentials
    ollama_base_url: str = os.getenv("NEXUSRAG_OLLAMA_BASE_URL", DEFAULT_OLLAMA_URL)
    openai_api_key: str = os.getenv("NEXUSRAG_OPENAI_API_KEY", "")
    openrouter_api_key: str = os.getenv("NEXUSRAG_OPENROUTER_API_KEY", "")

    # Chunking / retrieval
    chunk_size: int = int(os.getenv("NEXUSRAG_CHUNK_SIZE", "300"))
    chunk_overlap: int = int(os.getenv("NEXUSRAG_CHUNK_OVERLAP", "50"))
    top_k: int = int(os.getenv("NEXUSRAG_TOP_K", "5"))

    log_level: str = os.getenv("NEXUSRAG_LOG_LEVEL", "WARNING")


@dataclass(frozen=True)
class RagConfig:
    chunk_size: int = 300
    chunk_overlap: int = 50
    top_k: int = 5

    def validate(self) -> "RagConfig":
        if self.chunk_size <= 0:
            raise ValidationError(f"chunk_size must be positive (got {self.chunk_size}).")
        if self.chunk_overlap < 0:
            raise ValidationError(f"chunk_overlap must not be negative (got {self.chunk_overlap}).")
        if self.chunk_overlap >= self.chunk_size:
            raise ValidationError(
                f"chunk_overlap ({self.chunk_overlap}) must be smaller than chunk_size ({self.chunk_size})."
            )
        if self.top_k <= 0:
            raise ValidationError(f"top_k must be positive (got {self.top_k}).")
        return self


@dataclass(frozen=True)
class AppSettings:
    """The persisted settings record.

    Defaults come from ``Settings`` (environment); the record stored in the
    DB overrides them. Provider configs are built from here and passed
    explicitly into every provider call.
    """

    provider: str = "ollama"
    openai_key: str = ""
    openrouter_key: str = ""
    ollama_url: str = DEFAULT_OLLAMA_URL
    model_name: str = ""
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    strict_mode: bool = False
    embedding_provider: str = "local"
    embedding_model: str = "nomic-embed-text"
    rag: RagConfig = field(default_factory=RagConfig)

    @classmethod
    def from_settings(cls, settings: Settings) -> "AppSettings":
        return cls(
            provider=settings.chat_provider,
            openai_key=settings.openai_api_key,
            openrouter_key=settings.openrouter_api_key,
            ollama_url=settings.ollama_base_url,
            model_name=settings.chat_model,
            embedding_provider=settings.embed_provider,
            embedding_model=settings.embed_model,
            rag=RagConfig(
                chunk_size=settings.chunk_size,
                chunk_overlap=settings.chunk_overlap,
                top_k=settings.top_k,
            ),
        )

    def validate(self) -> "AppSettings":
        if self.provider not in CHAT_PROVIDERS:
            raise ValidationError(f"Unknown chat provider: {self.provider!r} (expected one of {', '.join(CHAT_PROVIDERS)}).")
        if self.embedding_provider not in EMBEDDING_PROVIDERS:
            raise ValidationError(
                f"Unknown embedding provider: {self.embedding_provider!r} "
                f"(expected one of {', '.join(EMBEDDING_PROVIDERS)})."
            )
        self.rag.validate()
        return self

    def embedding_provider_config(self) -> ProviderConfig:
        kind = self.embedding_provider
        if kind == "openai":
            return OpenAIProvider(api_key=self.openai_key, model=self.embedding_model)
        if kind == "openrouter":
            return OpenRouterProvider(api_key=self.openrouter_key, model=self.embedding_model)
        if kind == "fastembed":
            return FastEmbedProvider(model=self.embedding_model) if self.embedding_model else FastEmbedProvider()
        if kind == "local":
            return OllamaProvider(base_url=self.ollama_url, model=self.embedding_model)
        raise ValidationError(f"Unknown embedding provider: {kind!r}")

    def chat_provider_config(self) -> ProviderConfig:
        kind = self.provider
        if kind == "openai":
            return OpenAIProvider(api_key=self.openai_key, model=self.model_name)
        if kind == "openrouter":
            return OpenRouterProvider(api_key=self.openrouter_key, model=self.model_name)
        if kind == "ollama":
            return OllamaProvider(base_url=self.ollama_url, model=self.model_name)
        raise ValidationError(f"Unknown chat provider: {kind!r}")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any], *, base: "AppSettings | None" = None) -> "AppSettings":
        """Overlay a (possibly partial) stored record on top of ``base``."""
        base = base or cls()
        known = {f for f in cls.__dataclass_fields__ if f != "rag"}
        updates = {k: v for k, v in data.items() if k in known}
        rag_data = data.get("rag") or {}
        if not isinstance(rag_data, dict):
            raise ValidationError(f"rag must be an object (got {rag_data!r}).")
        rag = replace(
            base.rag,
            **{k: _as_int(k, v) for k, v in rag_data.items() if k in RagConfig.__dataclass_fields__},
        )
        if "strict_mode" in updates:
            updates["strict_mode"] = _as_bool(updates["strict_mode"])
        return replace(base, rag=rag, **updates)


def _as_int(name: str, v: Any) -> int:
    if isinstance(v, bool):
        raise ValidationError(f"{name} must be an integer (got {v!r}).")
    try:
        return int(v)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{name} must be an integer (got {v!r}).") from e


def _as_bool(v: Any) -> bool:
    if isinstance(v, str):
        return v.strip().lower() in {"1", "true", "yes", "on"}
    return bool(v)
