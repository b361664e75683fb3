from __future__ import annotations

import re
from pathlib import Path


def extract_text(path: str | Path) -> str:
    """Plain text of every page, whitespace collapsed."""
    p = Path(path)
    # Prefer PyMuPDF for better extraction.
    try:
        import fitz  # type: ignore

        doc = fitz.open(str(p))
        try:
            pages = [doc.load_page(i).get_text("text") or "" for i in range(doc.page_count)]
        finally:
            doc.close()
        return _clean("\n\n".join(pages))
    except ImportError:
        pass

    from pypdf import PdfReader  # type: ignore

    reader = PdfReader(str(p))
    return _clean("\n\n".join((page.extract_text() or "") for page in reader.pages))


def _clean(text: str) -> str:
    # Extracted PDF text often has broken spacing (notably RTL scripts).
    return re.sub(r"\s+", " ", text).strip()
