from __future__ import annotations

import math

from nexusrag.chat.llm import ChatMessage
from nexusrag.errors import ConnectivityError


class KeywordEmbedder:
    """Bag-of-words over a fixed vocabulary; deterministic and offline."""

    def __init__(self, vocab: list[str], *, fail_on: str | None = None, fail_after: int | None = None):
        self.vocab = vocab
        self.fail_on = fail_on
        self.fail_after = fail_after
        self.calls: list[str] = []

    def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.fail_after is not None and len(self.calls) > self.fail_after:
            raise ConnectivityError("provider went away", provider="fake")
        if self.fail_on is not None and self.fail_on in text:
            raise ConnectivityError("provider went away", provider="fake")
        words = text.lower().split()
        # Bias term keeps every vector non-zero (the probe text included).
        return [float(words.count(v)) for v in self.vocab] + [0.1]


class VectorEmbedder:
    """Returns one fixed vector for every text."""

    def __init__(self, vector: list[float]):
        self.vector = vector
        self.calls = 0

    def embed(self, text: str) -> list[float]:
        self.calls += 1
        return list(self.vector)


class FailingEmbedder:
    def __init__(self, exc: Exception):
        self.exc = exc

    def embed(self, text: str) -> list[float]:
        raise self.exc


class RecordingChatClient:
    def __init__(self, replies: list[str] | None = None, exc: Exception | None = None):
        self.replies = list(replies or ["ok"])
        self.exc = exc
        self.calls: list[list[ChatMessage]] = []

    def chat(self, messages: list[ChatMessage]) -> str:
        self.calls.append(list(messages))
        if self.exc is not None:
            raise self.exc
        if len(self.replies) > 1:
            return self.replies.pop(0)
        return self.replies[0]


def unit(score: float) -> list[float]:
    """2-d vector whose cosine with [1, 0] is ``score``."""
    return [score, math.sqrt(max(0.0, 1.0 - score * score))]
