from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable

from ..config import RagConfig
from ..errors import NexusError, ValidationError
from ..index.build import add_document
from ..index.embedder import Embedder
from . import pdf, word


logger = logging.getLogger(__name__)

SUPPORTED_TEXT_EXTS = {".md", ".markdown", ".txt"}
SUPPORTED_EXTS = SUPPORTED_TEXT_EXTS | {".pdf", ".docx"}


@dataclass(frozen=True)
class LoadedFile:
    title: str
    content: str


def load_file(path: str | Path) -> LoadedFile:
    """Convert a supported file into ``(title, plain text)``."""
    p = Path(path)
    ext = p.suffix.lower()
    if ext not in SUPPORTED_EXTS:
        raise ValidationError(
            f"Unsupported file type: {p.name}. Only PDF, DOCX, TXT and MD are supported."
        )

    if ext == ".pdf":
        content = pdf.extract_text(p)
    elif ext == ".docx":
        content = word.extract_text(p)
    else:
        content = p.read_text(encoding="utf-8", errors="replace")

    return LoadedFile(title=p.stem, content=content)


def iter_files(root: Path) -> Iterable[Path]:
    for p in sorted(root.rglob("*")):
        if not p.is_file():
            continue
        if p.name.startswith("."):
            continue
        if p.suffix.lower() not in SUPPORTED_EXTS:
            continue
        yield p


def ingest_directory(
    conn: sqlite3.Connection,
    input_dir: Path,
    *,
    embedder: Embedder,
    rag: RagConfig,
    max_workers: int = 1,
) -> dict[str, Any]:
    """Load and index every supported file under ``input_dir``.

    A failing file is recorded and skipped; its document (if created) is
    left with status ``error``.
    """
    files_seen = 0
    documents_indexed = 0
    chunks_inserted = 0
    failures: list[dict[str, str]] = []

    for path in iter_files(input_dir):
        files_seen += 1
        try:
            loaded = load_file(path)
            _doc, chunks = add_document(
                conn,
                title=loaded.title,
                content=loaded.content,
                embedder=embedder,
                rag=rag,
                max_workers=max_workers,
            )
        except NexusError as e:
            logger.warning("Skipping %s: %s", path, e)
            failures.append({"path": str(path), "error": str(e)})
            continue
        documents_indexed += 1
        chunks_inserted += len(chunks)

    return {
        "files_seen": files_seen,
        "documents_indexed": documents_indexed,
        "chunks_inserted": chunks_inserted,
        "failures": failures,
    }
