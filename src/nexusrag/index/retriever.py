from __future__ import annotations

import logging
import sqlite3
from typing import Iterable

from .. import store
from ..graph.extract import extract_entities
from ..models import Document, RetrievalContext, TextChunk
from .embedder import Embedder
from .similarity import cosine_similarity


logger = logging.getLogger(__name__)

# Scores must be strictly above this to be returned.
SIMILARITY_THRESHOLD = 0.25
UNKNOWN_DOCUMENT = "Unknown document"


def retrieve_context(
    query: str,
    chunks: list[TextChunk],
    embedder: Embedder,
    top_k: int,
    documents: Iterable[Document],
    *,
    threshold: float = SIMILARITY_THRESHOLD,
) -> list[RetrievalContext]:
    """Return the ``top_k`` chunks most similar to ``query``, best first.

    An empty query or an empty corpus returns ``[]`` without touching the
    provider. Provider failures while embedding the query propagate.
    """
    if not query or not query.strip() or not chunks:
        return []

    qvec = embedder.embed(query)

    scored: list[tuple[TextChunk, float]] = []
    for c in chunks:
        score = cosine_similarity(qvec, c.vector) if c.vector else 0.0
        if score > threshold:
            scored.append((c, score))

    scored.sort(key=lambda x: x[1], reverse=True)
    top = scored[: max(0, int(top_k))]
    logger.debug("Query matched %d/%d chunks above %.2f; returning %d", len(scored), len(chunks), threshold, len(top))

    titles = {d.id: d.title for d in documents}
    return [
        RetrievalContext(
            chunk_id=c.id,
            doc_id=c.doc_id,
            doc_title=titles.get(c.doc_id, UNKNOWN_DOCUMENT),
            content=c.text,
            score=float(score),
            related_entities=extract_entities(c.text),
        )
        for c, score in top
    ]


class Retriever:
    """Linear-scan retriever over every chunk in the store."""

    def __init__(
        self,
        *,
        conn: sqlite3.Connection,
        embedder: Embedder,
        threshold: float = SIMILARITY_THRESHOLD,
    ):
        self.conn = conn
        self.embedder = embedder
        self.threshold = float(threshold)

    def retrieve(self, query: str, k: int = 5) -> list[RetrievalContext]:
        if not query or not query.strip():
            return []
        chunks = store.list_chunks(self.conn)
        if not chunks:
            return []
        documents = store.list_documents(self.conn)
        return retrieve_context(query, chunks, self.embedder, int(k), documents, threshold=self.threshold)
