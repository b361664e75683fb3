from __future__ import annotations

from pathlib import Path


def extract_text(path: str | Path) -> str:
    from docx import Document  # type: ignore

    doc = Document(str(path))
    return "\n".join(p.text for p in doc.paragraphs).strip()
