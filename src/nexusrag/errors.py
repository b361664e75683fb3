from __future__ import annotations


class NexusError(Exception):
    """Base class for every error the engine surfaces to a caller."""


class ValidationError(NexusError, ValueError):
    """Bad input: empty document content, invalid chunk parameters, unsupported file."""


class ProviderError(NexusError, RuntimeError):
    """An embedding/completion provider failed (non-success status or similar)."""

    def __init__(self, message: str, *, provider: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class ConfigurationError(ProviderError):
    """A required credential for the selected provider is missing."""


class ConnectivityError(ProviderError):
    """Provider unreachable or timed out."""

    def __init__(self, message: str, *, provider: str | None = None, hint: str | None = None):
        super().__init__(message, provider=provider)
        self.hint = hint

    def __str__(self) -> str:
        base = super().__str__()
        return f"{base}\n{self.hint}" if self.hint else base


class ResourceNotFoundError(ProviderError):
    """Requested model is not available on a local provider."""

    def __init__(self, message: str, *, provider: str | None = None, command: str | None = None):
        super().__init__(message, provider=provider, status_code=404)
        self.command = command

    def __str__(self) -> str:
        base = super().__str__()
        return f"{base}\nFix: `{self.command}`" if self.command else base


class MalformedResponseError(ProviderError):
    """Provider answered with success but the body had an unexpected shape."""
