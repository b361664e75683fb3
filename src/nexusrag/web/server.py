import sqlite3
import tempfile
from pathlib import Path
from typing import Any


def create_app(*, db_path: str | None = None, embedder=None, chat_client=None):
    """JSON API over the engine.

    ``embedder`` / ``chat_client`` override the providers built from the
    stored settings (tests pass in-process fakes).
    """
    # Lazy import so the core CLI works without web deps.
    from fastapi import FastAPI, File, Request, UploadFile
    from fastapi.responses import JSONResponse

    from .. import __version__, store
    from ..chat.llm import get_chat_client
    from ..chat.rag import answer_question
    from ..config import AppSettings, Settings
    from ..errors import ConfigurationError, NexusError, ProviderError, ResourceNotFoundError, ValidationError
    from ..graph.build import build_graph, build_roadmap
    from ..index.build import add_document, remove_document, update_document
    from ..index.embedder import get_embedder
    from ..index.retriever import Retriever
    from ..ingest.runner import load_file
    from ..providers import check_ollama_connection

    env = Settings()
    db_default = db_path or env.db_path

    app = FastAPI(title="Nexus RAG", version=__version__)

    def _open_db() -> sqlite3.Connection:
        conn = store.connect(db_default)
        store.init_db(conn)
        return conn

    def _settings(conn: sqlite3.Connection) -> AppSettings:
        base = AppSettings.from_settings(env)
        stored = store.get_settings(conn)
        return AppSettings.from_dict(stored, base=base) if stored else base

    def _embedder(s: AppSettings):
        return embedder if embedder is not None else get_embedder(s.embedding_provider_config())

    def _chat_client(s: AppSettings):
        return chat_client if chat_client is not None else get_chat_client(s.chat_provider_config())

    @app.exception_handler(NexusError)
    async def nexus_error(request: Request, exc: NexusError):
        if isinstance(exc, (ValidationError, ConfigurationError)):
            status = 400
        elif isinstance(exc, ResourceNotFoundError):
            status = 404
        elif isinstance(exc, ProviderError):
            status = 502
        else:
            status = 500
        body: dict[str, Any] = {"ok": False, "error": str(exc), "kind": type(exc).__name__}
        hint = getattr(exc, "hint", None) or getattr(exc, "command", None)
        if hint:
            body["hint"] = hint
        return JSONResponse(body, status_code=status)

    @app.get("/api/health")
    def health():
        conn = _open_db()
        try:
            s = _settings(conn)
        finally:
            conn.close()
        out: dict[str, Any] = {"ollama_base_url": s.ollama_url, "ollama_ok": False, "models": []}
        try:
            out["models"] = check_ollama_connection(s.ollama_url)
            out["ollama_ok"] = True
        except NexusError as e:
            out["error"] = str(e)
        return out

    @app.get("/api/documents")
    def list_documents():
        conn = _open_db()
        try:
            docs = store.list_documents(conn)
            counts = store.count_chunks_by_document(conn)
        finally:
            conn.close()
        return {
            "ok": True,
            "documents": [{**d.to_dict(), "chunks": counts.get(d.id, 0)} for d in docs],
        }

    @app.post("/api/documents")
    def create_document(payload: dict[str, Any]):
        conn = _open_db()
        try:
            s = _settings(conn).validate()
            doc, chunks = add_document(
                conn,
                title=str(payload.get("title") or "Untitled"),
                content=str(payload.get("content") or ""),
                embedder=_embedder(s),
                rag=s.rag,
            )
        finally:
            conn.close()
        return {"ok": True, "document": doc.to_dict(), "chunks": len(chunks)}

    @app.post("/api/documents/upload")
    async def upload_document(file: UploadFile = File(...)):
        name = Path(file.filename or "upload.txt").name
        data = await file.read()
        with tempfile.TemporaryDirectory() as tmp:
            dest = Path(tmp) / name
            dest.write_bytes(data)
            loaded = load_file(dest)

        conn = _open_db()
        try:
            s = _settings(conn).validate()
            doc, chunks = add_document(conn, title=loaded.title, content=loaded.content, embedder=_embedder(s), rag=s.rag)
        finally:
            conn.close()
        return {"ok": True, "document": doc.to_dict(), "chunks": len(chunks)}

    @app.put("/api/documents/{doc_id}")
    def edit_document(doc_id: str, payload: dict[str, Any]):
        conn = _open_db()
        try:
            existing = store.get_document(conn, doc_id)
            if existing is None:
                return JSONResponse({"ok": False, "error": "Not found"}, status_code=404)
            s = _settings(conn).validate()
            doc, chunks = update_document(
                conn,
                doc_id,
                title=str(payload.get("title") or existing.title),
                content=str(payload.get("content") if payload.get("content") is not None else existing.content),
                embedder=_embedder(s),
                rag=s.rag,
            )
        finally:
            conn.close()
        return {"ok": True, "document": doc.to_dict(), "chunks": len(chunks)}

    @app.delete("/api/documents/{doc_id}")
    def delete_document(doc_id: str):
        conn = _open_db()
        try:
            removed = remove_document(conn, doc_id)
        finally:
            conn.close()
        if not removed:
            return JSONResponse({"ok": False, "error": "Not found"}, status_code=404)
        return {"ok": True}

    @app.post("/api/search")
    def search(payload: dict[str, Any]):
        query = str(payload.get("query") or "").strip()
        if not query:
            return JSONResponse({"ok": False, "error": "query is required"}, status_code=400)

        conn = _open_db()
        try:
            s = _settings(conn).validate()
            k = s.rag.top_k
            if payload.get("k") not in (None, ""):
                # Same integer and range checks as the stored top_k.
                k = AppSettings.from_dict({"rag": {"top_k": payload["k"]}}, base=s).validate().rag.top_k
            hits = Retriever(conn=conn, embedder=_embedder(s)).retrieve(query, k=k)
        finally:
            conn.close()
        return {"ok": True, "contexts": [h.to_dict() for h in hits]}

    @app.post("/api/ask")
    def ask(payload: dict[str, Any]):
        question = str(payload.get("question") or "").strip()
        if not question:
            return JSONResponse({"ok": False, "error": "question is required"}, status_code=400)

        conn = _open_db()
        try:
            s = _settings(conn).validate()
            ans = answer_question(
                conn,
                question,
                embedder=_embedder(s),
                chat_client=_chat_client(s),
                settings=s,
                session_id=payload.get("session_id"),
            )
        finally:
            conn.close()
        return {
            "ok": True,
            "answer": ans.text,
            "session_id": ans.session_id,
            "contexts": [c.to_dict() for c in ans.contexts],
        }

    @app.get("/api/graph")
    def graph():
        conn = _open_db()
        try:
            kg = build_graph(store.list_documents(conn), store.list_chunks(conn))
        finally:
            conn.close()
        return {"ok": True, "graph": kg.to_dict()}

    @app.post("/api/roadmap")
    def roadmap(payload: dict[str, Any]):
        query = str(payload.get("query") or "").strip()
        if not query:
            return JSONResponse({"ok": False, "error": "query is required"}, status_code=400)
        conn = _open_db()
        try:
            s = _settings(conn).validate()
            contexts = Retriever(conn=conn, embedder=_embedder(s)).retrieve(query, k=s.rag.top_k)
        finally:
            conn.close()
        return {"ok": True, "graph": build_roadmap(query, contexts).to_dict()}

    @app.get("/api/settings")
    def get_settings():
        conn = _open_db()
        try:
            return {"ok": True, "settings": _settings(conn).to_dict()}
        finally:
            conn.close()

    @app.put("/api/settings")
    def put_settings(payload: dict[str, Any]):
        conn = _open_db()
        try:
            updated = AppSettings.from_dict(payload, base=_settings(conn)).validate()
            store.save_settings(conn, updated.to_dict())
        finally:
            conn.close()
        return {"ok": True, "settings": updated.to_dict()}

    @app.get("/api/sessions")
    def list_sessions():
        conn = _open_db()
        try:
            return {"ok": True, "sessions": [s.to_dict() for s in store.list_sessions(conn)]}
        finally:
            conn.close()

    @app.get("/api/sessions/{session_id}/messages")
    def session_messages(session_id: str):
        conn = _open_db()
        try:
            return {"ok": True, "messages": [m.to_dict() for m in store.messages_for_session(conn, session_id)]}
        finally:
            conn.close()

    @app.delete("/api/sessions/{session_id}")
    def delete_session(session_id: str):
        conn = _open_db()
        try:
            removed = store.delete_session(conn, session_id)
        finally:
            conn.close()
        if not removed:
            return JSONResponse({"ok": False, "error": "Not found"}, status_code=404)
        return {"ok": True}

    return app
