from __future__ import annotations

import logging
import sqlite3
from concurrent.futures import ThreadPoolExecutor

from .. import store
from ..config import RagConfig
from ..errors import ValidationError
from ..models import Document, TextChunk, chunk_id_for, new_id, now_ms
from .chunker import chunk_text, validate_chunk_params
from .embedder import Embedder


logger = logging.getLogger(__name__)

PROBE_TEXT = "test"


def index_document(
    doc: Document,
    embedder: Embedder,
    rag: RagConfig,
    *,
    max_workers: int = 1,
) -> list[TextChunk]:
    """Chunk ``doc`` and embed every chunk, in order.

    One probe embedding runs first so a missing key or unreachable provider
    fails before any per-chunk work. Any exception aborts the whole run; no
    partial result is returned.
    """
    if not doc.content or not doc.content.strip():
        raise ValidationError(f"Document '{doc.title}' has no content.")
    validate_chunk_params(rag.chunk_size, rag.chunk_overlap)

    embedder.embed(PROBE_TEXT)

    texts = chunk_text(doc.content, rag.chunk_size, rag.chunk_overlap)
    logger.info("Indexing %s (%r): %d chunks", doc.id, doc.title, len(texts))

    if max_workers > 1 and len(texts) > 1:
        # map() yields in submission order, so ids stay tied to sequence index.
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            vectors = list(pool.map(embedder.embed, texts))
    else:
        vectors = [embedder.embed(t) for t in texts]

    return [
        TextChunk(id=chunk_id_for(doc.id, idx), doc_id=doc.id, text=text, vector=vec)
        for idx, (text, vec) in enumerate(zip(texts, vectors))
    ]


def index_and_store(
    conn: sqlite3.Connection,
    doc: Document,
    embedder: Embedder,
    rag: RagConfig,
    *,
    max_workers: int = 1,
) -> tuple[Document, list[TextChunk]]:
    """Persist ``doc`` as indexing, index it, then mark it ready or error.

    Chunks are written only after the whole document embedded successfully,
    in the same transaction that marks it ready.
    On failure the document is stored with status ``error`` and the
    exception is re-raised.
    """
    pending = doc.with_status("indexing")
    store.put_document(conn, pending)
    try:
        chunks = index_document(pending, embedder, rag, max_workers=max_workers)
    except Exception:
        logger.warning("Indexing failed for %s (%r)", doc.id, doc.title, exc_info=True)
        store.put_document(conn, pending.with_status("error"))
        raise

    ready = pending.with_status("ready")
    try:
        store.put_indexed_document(conn, ready, chunks)
    except Exception:
        logger.warning("Storing chunks failed for %s (%r)", doc.id, doc.title, exc_info=True)
        store.put_document(conn, pending.with_status("error"))
        raise
    return ready, chunks


def add_document(
    conn: sqlite3.Connection,
    *,
    title: str,
    content: str,
    embedder: Embedder,
    rag: RagConfig,
    doc_id: str | None = None,
    max_workers: int = 1,
) -> tuple[Document, list[TextChunk]]:
    if not content or not content.strip():
        raise ValidationError("Document content is empty.")
    doc = Document(
        id=doc_id or new_id(),
        title=(title or "Untitled").strip() or "Untitled",
        content=content,
        created_at=now_ms(),
        status="indexing",
    )
    return index_and_store(conn, doc, embedder, rag, max_workers=max_workers)


def update_document(
    conn: sqlite3.Connection,
    doc_id: str,
    *,
    title: str,
    content: str,
    embedder: Embedder,
    rag: RagConfig,
    max_workers: int = 1,
) -> tuple[Document, list[TextChunk]]:
    """Delete-then-reinsert under the same id.

    Callers must not run two updates of the same id concurrently.
    """
    if not content or not content.strip():
        raise ValidationError("Document content is empty.")
    store.delete_document(conn, doc_id)
    return add_document(
        conn,
        title=title,
        content=content,
        embedder=embedder,
        rag=rag,
        doc_id=doc_id,
        max_workers=max_workers,
    )


def remove_document(conn: sqlite3.Connection, doc_id: str) -> bool:
    return store.delete_document(conn, doc_id)
