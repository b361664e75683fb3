from __future__ import annotations

import json
import os
import sqlite3
from pathlib import Path
from typing import Any, Iterable

from .models import ChatSession, Document, Message, RetrievalContext, TextChunk


SCHEMA_VERSION = 1
SETTINGS_KEY = "app-settings"


def connect(db_path: str | os.PathLike[str]) -> sqlite3.Connection:
    if str(db_path) != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    if str(db_path) != ":memory:":
        conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    conn.execute("PRAGMA foreign_keys=ON;")
    return conn


def init_db(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS meta (
          key TEXT PRIMARY KEY,
          value TEXT NOT NULL
        );
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS documents (
          id TEXT PRIMARY KEY,
          title TEXT NOT NULL,
          content TEXT NOT NULL,
          created_at INTEGER NOT NULL,
          status TEXT NOT NULL
        );
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS chunks (
          id TEXT PRIMARY KEY,
          doc_id TEXT NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
          seq INTEGER NOT NULL,
          text TEXT NOT NULL,
          vector_json TEXT
        );
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_chunks_doc ON chunks(doc_id);")
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS sessions (
          id TEXT PRIMARY KEY,
          title TEXT NOT NULL,
          created_at INTEGER NOT NULL,
          updated_at INTEGER NOT NULL,
          preview TEXT NOT NULL
        );
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS messages (
          id TEXT PRIMARY KEY,
          session_id TEXT NOT NULL REFERENCES sessions(id) ON DELETE CASCADE,
          role TEXT NOT NULL,
          content TEXT NOT NULL,
          context_json TEXT,
          timestamp INTEGER NOT NULL
        );
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_messages_session ON messages(session_id);")
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS settings (
          key TEXT PRIMARY KEY,
          value_json TEXT NOT NULL
        );
        """
    )

    conn.execute(
        "INSERT OR REPLACE INTO meta(key, value) VALUES(?, ?)",
        ("schema_version", str(SCHEMA_VERSION)),
    )
    conn.commit()


# -- Documents


def _row_to_document(row: sqlite3.Row) -> Document:
    return Document(
        id=str(row["id"]),
        title=str(row["title"]),
        content=str(row["content"]),
        created_at=int(row["created_at"]),
        status=row["status"],
    )


def put_document(conn: sqlite3.Connection, doc: Document) -> None:
    _upsert_document(conn, doc)
    conn.commit()


def _upsert_document(conn: sqlite3.Connection, doc: Document) -> None:
    conn.execute(
        """
        INSERT INTO documents(id, title, content, created_at, status)
        VALUES(?, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
          title=excluded.title,
          content=excluded.content,
          created_at=excluded.created_at,
          status=excluded.status
        """,
        (doc.id, doc.title, doc.content, int(doc.created_at), doc.status),
    )


def get_document(conn: sqlite3.Connection, doc_id: str) -> Document | None:
    row = conn.execute(
        "SELECT id, title, content, created_at, status FROM documents WHERE id = ?",
        (doc_id,),
    ).fetchone()
    return _row_to_document(row) if row is not None else None


def list_documents(conn: sqlite3.Connection) -> list[Document]:
    cur = conn.execute("SELECT id, title, content, created_at, status FROM documents ORDER BY created_at, id")
    return [_row_to_document(r) for r in cur.fetchall()]


def delete_document(conn: sqlite3.Connection, doc_id: str) -> bool:
    """Delete a document and (explicitly, not just via FK) all of its chunks."""
    conn.execute("DELETE FROM chunks WHERE doc_id = ?", (doc_id,))
    cur = conn.execute("DELETE FROM documents WHERE id = ?", (doc_id,))
    conn.commit()
    return cur.rowcount > 0


# -- Chunks


def _row_to_chunk(row: sqlite3.Row) -> TextChunk:
    raw = row["vector_json"]
    return TextChunk(
        id=str(row["id"]),
        doc_id=str(row["doc_id"]),
        text=str(row["text"]),
        vector=json.loads(raw) if raw else None,
    )


def put_chunks(conn: sqlite3.Connection, chunks: Iterable[TextChunk]) -> None:
    _insert_chunks(conn, chunks)
    conn.commit()


def _insert_chunks(conn: sqlite3.Connection, chunks: Iterable[TextChunk]) -> None:
    conn.executemany(
        """
        INSERT OR REPLACE INTO chunks(id, doc_id, seq, text, vector_json)
        VALUES (?, ?, ?, ?, ?)
        """,
        [
            (
                c.id,
                c.doc_id,
                seq,
                c.text,
                json.dumps(c.vector) if c.vector is not None else None,
            )
            for seq, c in enumerate(chunks)
        ],
    )


def put_indexed_document(conn: sqlite3.Connection, doc: Document, chunks: Iterable[TextChunk]) -> None:
    """Write ``chunks`` and ``doc`` in one transaction; neither lands if either fails."""
    try:
        _insert_chunks(conn, chunks)
        _upsert_document(conn, doc)
    except Exception:
        conn.rollback()
        raise
    conn.commit()


def list_chunks(conn: sqlite3.Connection) -> list[TextChunk]:
    cur = conn.execute("SELECT id, doc_id, text, vector_json FROM chunks ORDER BY doc_id, seq")
    return [_row_to_chunk(r) for r in cur.fetchall()]


def chunks_for_document(conn: sqlite3.Connection, doc_id: str) -> list[TextChunk]:
    cur = conn.execute(
        "SELECT id, doc_id, text, vector_json FROM chunks WHERE doc_id = ? ORDER BY seq",
        (doc_id,),
    )
    return [_row_to_chunk(r) for r in cur.fetchall()]


def count_chunks_by_document(conn: sqlite3.Connection) -> dict[str, int]:
    cur = conn.execute("SELECT doc_id, COUNT(*) AS n FROM chunks GROUP BY doc_id")
    return {str(r["doc_id"]): int(r["n"]) for r in cur.fetchall()}


# -- Sessions / messages


def _row_to_session(row: sqlite3.Row) -> ChatSession:
    return ChatSession(
        id=str(row["id"]),
        title=str(row["title"]),
        created_at=int(row["created_at"]),
        updated_at=int(row["updated_at"]),
        preview=str(row["preview"]),
    )


def put_session(conn: sqlite3.Connection, session: ChatSession) -> None:
    conn.execute(
        """
        INSERT INTO sessions(id, title, created_at, updated_at, preview)
        VALUES(?, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
          title=excluded.title,
          updated_at=excluded.updated_at,
          preview=excluded.preview
        """,
        (session.id, session.title, int(session.created_at), int(session.updated_at), session.preview),
    )
    conn.commit()


def get_session(conn: sqlite3.Connection, session_id: str) -> ChatSession | None:
    row = conn.execute(
        "SELECT id, title, created_at, updated_at, preview FROM sessions WHERE id = ?",
        (session_id,),
    ).fetchone()
    return _row_to_session(row) if row is not None else None


def list_sessions(conn: sqlite3.Connection) -> list[ChatSession]:
    """Most recently updated first."""
    cur = conn.execute("SELECT id, title, created_at, updated_at, preview FROM sessions ORDER BY updated_at DESC, id")
    return [_row_to_session(r) for r in cur.fetchall()]


def delete_session(conn: sqlite3.Connection, session_id: str) -> bool:
    conn.execute("DELETE FROM messages WHERE session_id = ?", (session_id,))
    cur = conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
    conn.commit()
    return cur.rowcount > 0


def add_message(conn: sqlite3.Connection, msg: Message) -> None:
    ctx_json = None
    if msg.retrieved_context is not None:
        ctx_json = json.dumps([c.to_dict() for c in msg.retrieved_context], ensure_ascii=False)
    conn.execute(
        """
        INSERT OR REPLACE INTO messages(id, session_id, role, content, context_json, timestamp)
        VALUES(?, ?, ?, ?, ?, ?)
        """,
        (msg.id, msg.session_id, msg.role, msg.content, ctx_json, int(msg.timestamp)),
    )
    conn.commit()


def messages_for_session(conn: sqlite3.Connection, session_id: str) -> list[Message]:
    cur = conn.execute(
        """
        SELECT id, session_id, role, content, context_json, timestamp
        FROM messages WHERE session_id = ?
        ORDER BY timestamp, rowid
        """,
        (session_id,),
    )
    out: list[Message] = []
    for r in cur.fetchall():
        raw = r["context_json"]
        ctx = [RetrievalContext.from_dict(d) for d in json.loads(raw)] if raw else None
        out.append(
            Message(
                id=str(r["id"]),
                session_id=str(r["session_id"]),
                role=r["role"],
                content=str(r["content"]),
                timestamp=int(r["timestamp"]),
                retrieved_context=ctx,
            )
        )
    return out


# -- Settings record


def get_settings(conn: sqlite3.Connection) -> dict[str, Any] | None:
    row = conn.execute("SELECT value_json FROM settings WHERE key = ?", (SETTINGS_KEY,)).fetchone()
    return json.loads(row["value_json"]) if row is not None else None


def save_settings(conn: sqlite3.Connection, value: dict[str, Any]) -> None:
    conn.execute(
        "INSERT OR REPLACE INTO settings(key, value_json) VALUES(?, ?)",
        (SETTINGS_KEY, json.dumps(value, ensure_ascii=False)),
    )
    conn.commit()
