from __future__ import annotations

from collections import Counter

from ..index.tokenize import tokenize

MAX_ENTITIES = 5


def entity_id(term: str) -> str:
    # Shared by the corpus graph, the roadmap and retrieval contexts.
    return f"ent_{term}"


def extract_entities(text: str | None, *, limit: int = MAX_ENTITIES) -> list[str]:
    """Return up to ``limit`` keyword "entities", most frequent first.

    Ties keep first-occurrence order (Counter preserves insertion order and
    ``sorted`` is stable). This is a keyword heuristic, not NER.
    """
    counts = Counter(tokenize(text))
    ranked = sorted(counts.items(), key=lambda kv: kv[1], reverse=True)
    return [term for term, _ in ranked[:limit]]
