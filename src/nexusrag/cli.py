from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import replace
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table
from rich.text import Text

from . import store
from .chat.llm import get_chat_client
from .chat.rag import answer_question
from .config import AppSettings, Settings
from .errors import ConnectivityError, NexusError, ValidationError
from .graph.build import build_graph, build_roadmap
from .index.build import add_document, remove_document, update_document
from .index.embedder import get_embedder
from .index.retriever import Retriever
from .ingest.runner import ingest_directory, load_file
from .providers import check_ollama_connection


app = typer.Typer(add_completion=False, help="Nexus RAG: retrieval-augmented chat over your documents.")
console = Console()

config_app = typer.Typer(add_completion=False, help="Show or change the stored settings record.")
app.add_typer(config_app, name="config")

DbOption = typer.Option(None, "--db", help="SQLite DB path (default: NEXUSRAG_DB_PATH)")


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging")):
    settings = Settings()
    level = logging.DEBUG if verbose else getattr(logging, settings.log_level.upper(), logging.WARNING)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=False, show_path=False)],
    )


def _open_db(db: Path | None) -> sqlite3.Connection:
    conn = store.connect(db or Settings().db_path)
    store.init_db(conn)
    return conn


def _app_settings(conn: sqlite3.Connection) -> AppSettings:
    base = AppSettings.from_settings(Settings())
    stored = store.get_settings(conn)
    return AppSettings.from_dict(stored, base=base) if stored else base


def _fail(e: NexusError) -> None:
    console.print(str(e), style="red", markup=False)
    raise typer.Exit(code=2)


@app.command()
def add(
    db: Path | None = DbOption,
    title: str | None = typer.Option(None, "--title", help="Document title"),
    content: str | None = typer.Option(None, "--content", help="Document text"),
    file: Path | None = typer.Option(None, "--file", exists=True, file_okay=True, dir_okay=False),
    workers: int = typer.Option(1, "--workers", help="Parallel embedding calls per document"),
):
    """Add one document (text or a PDF/DOCX/TXT/MD file) and index it."""
    conn = _open_db(db)
    try:
        settings = _app_settings(conn).validate()
        if file is not None:
            loaded = load_file(file)
            title, content = title or loaded.title, loaded.content
        if not content:
            raise ValidationError("Provide --content or --file.")
        embedder = get_embedder(settings.embedding_provider_config())
        doc, chunks = add_document(
            conn,
            title=title or "Untitled",
            content=content,
            embedder=embedder,
            rag=settings.rag,
            max_workers=int(workers),
        )
    except NexusError as e:
        _fail(e)
    finally:
        conn.close()

    console.print(f"Indexed {doc.title!r} ({doc.id}): {len(chunks)} chunks", markup=False)


@app.command()
def ingest(
    input: Path = typer.Option(..., "--input", exists=True, file_okay=False, dir_okay=True),
    db: Path | None = DbOption,
    workers: int = typer.Option(1, "--workers", help="Parallel embedding calls per document"),
):
    """Index every supported file under a directory."""
    conn = _open_db(db)
    try:
        settings = _app_settings(conn).validate()
        embedder = get_embedder(settings.embedding_provider_config())
        res = ingest_directory(conn, input, embedder=embedder, rag=settings.rag, max_workers=int(workers))
    except NexusError as e:
        _fail(e)
    finally:
        conn.close()

    console.print(f"Files seen: {res['files_seen']}")
    console.print(f"Documents indexed: {res['documents_indexed']}")
    console.print(f"Chunks inserted: {res['chunks_inserted']}")
    for f in res["failures"]:
        console.print(f"- {f['path']}: {f['error']}", style="yellow", markup=False)


@app.command()
def docs(db: Path | None = DbOption):
    """List documents with their indexing status."""
    conn = _open_db(db)
    try:
        documents = store.list_documents(conn)
        counts = store.count_chunks_by_document(conn)
    finally:
        conn.close()

    table = Table(title="Documents")
    table.add_column("id")
    table.add_column("title")
    table.add_column("status")
    table.add_column("chunks", justify="right")
    styles = {"ready": "green", "indexing": "yellow", "error": "red"}
    for d in documents:
        table.add_row(Text(d.id), Text(d.title), Text(d.status, style=styles.get(d.status, "")), Text(str(counts.get(d.id, 0))))
    console.print(table)


@app.command()
def edit(
    doc_id: str = typer.Argument(...),
    db: Path | None = DbOption,
    title: str | None = typer.Option(None, "--title"),
    content: str | None = typer.Option(None, "--content"),
    file: Path | None = typer.Option(None, "--file", exists=True, file_okay=True, dir_okay=False),
):
    """Replace a document's title/content and re-index it under the same id."""
    conn = _open_db(db)
    try:
        existing = store.get_document(conn, doc_id)
        if existing is None:
            console.print(f"No document with id {doc_id}", style="yellow", markup=False)
            raise typer.Exit(code=2)
        settings = _app_settings(conn).validate()
        if file is not None:
            content = load_file(file).content
        doc, chunks = update_document(
            conn,
            doc_id,
            title=title or existing.title,
            content=content if content is not None else existing.content,
            embedder=get_embedder(settings.embedding_provider_config()),
            rag=settings.rag,
        )
    except NexusError as e:
        _fail(e)
    finally:
        conn.close()

    console.print(f"Re-indexed {doc.title!r}: {len(chunks)} chunks", markup=False)


@app.command()
def remove(doc_id: str = typer.Argument(...), db: Path | None = DbOption):
    """Delete a document and all of its chunks."""
    conn = _open_db(db)
    try:
        removed = remove_document(conn, doc_id)
    finally:
        conn.close()
    if not removed:
        console.print(f"No document with id {doc_id}", style="yellow", markup=False)
        raise typer.Exit(code=2)
    console.print(f"Removed {doc_id}", markup=False)


@app.command()
def search(
    query: str = typer.Argument(...),
    db: Path | None = DbOption,
    k: int | None = typer.Option(None, "-k", help="Top-k chunks (default: stored top_k)"),
    show_text: bool = typer.Option(False, "--show-text", help="Also print full chunk text"),
):
    """Debug retrieval: show the top chunks with scores and entities."""
    conn = _open_db(db)
    try:
        settings = _app_settings(conn).validate()
        retriever = Retriever(conn=conn, embedder=get_embedder(settings.embedding_provider_config()))
        hits = retriever.retrieve(query, k=int(k or settings.rag.top_k))
    except NexusError as e:
        _fail(e)
    finally:
        conn.close()

    table = Table(title=f"Top {len(hits)} Chunks")
    table.add_column("#", justify="right", width=4)
    table.add_column("score", justify="right", width=8)
    table.add_column("document")
    table.add_column("entities")
    table.add_column("preview")

    for i, h in enumerate(hits, start=1):
        preview = " ".join(h.content.split())
        if len(preview) > 220:
            preview = preview[:220].rstrip() + "..."
        table.add_row(
            Text(str(i)),
            Text(f"{h.score:.3f}"),
            Text(h.doc_title),
            Text(", ".join(h.related_entities)),
            Text(preview),
        )
    console.print(table)

    if show_text:
        for h in hits:
            console.print("\n" + "=" * 80, markup=False)
            console.print(f"{h.doc_title} :: {h.chunk_id}", markup=False, style="bold")
            console.print(h.content, markup=False)


@app.command()
def ask(
    question: str = typer.Argument(...),
    db: Path | None = DbOption,
    session: str | None = typer.Option(None, "--session", help="Continue an existing chat session"),
    k: int | None = typer.Option(None, "-k", help="Top-k chunks (default: stored top_k)"),
):
    """Ask a question; the exchange is saved in a chat session."""
    conn = _open_db(db)
    try:
        settings = _app_settings(conn).validate()
        if k:
            settings = replace(settings, rag=replace(settings.rag, top_k=int(k))).validate()
        ans = answer_question(
            conn,
            question,
            embedder=get_embedder(settings.embedding_provider_config()),
            chat_client=get_chat_client(settings.chat_provider_config()),
            settings=settings,
            session_id=session,
        )
    except NexusError as e:
        _fail(e)
    finally:
        conn.close()

    # Answers may contain [..] which rich would treat as markup.
    console.print(ans.text, markup=False)
    if ans.contexts:
        console.print("\nSources:", markup=False)
        for s in ans.sources:
            console.print(f"- {s}", markup=False)
    console.print(f"\nsession: {ans.session_id}", style="dim", markup=False)


@app.command()
def sessions(db: Path | None = DbOption):
    """List chat sessions, most recent first."""
    conn = _open_db(db)
    try:
        rows = store.list_sessions(conn)
    finally:
        conn.close()

    table = Table(title="Chat Sessions")
    table.add_column("id")
    table.add_column("title")
    table.add_column("preview")
    for s in rows:
        table.add_row(Text(s.id), Text(s.title), Text(s.preview))
    console.print(table)


@app.command()
def history(session_id: str = typer.Argument(...), db: Path | None = DbOption):
    """Print the messages of a chat session with their sources."""
    conn = _open_db(db)
    try:
        messages = store.messages_for_session(conn, session_id)
    finally:
        conn.close()

    if not messages:
        console.print("No messages found.", style="yellow")
        raise typer.Exit(code=2)

    for m in messages:
        console.print(f"{m.role}:", style="bold", markup=False)
        console.print(m.content, markup=False)
        for c in m.retrieved_context or []:
            console.print(f"  - {c.doc_title} ({c.score:.0%})", style="dim", markup=False)
        console.print("")


@app.command("delete-session")
def delete_session(session_id: str = typer.Argument(...), db: Path | None = DbOption):
    """Delete a chat session and its messages."""
    conn = _open_db(db)
    try:
        removed = store.delete_session(conn, session_id)
    finally:
        conn.close()
    if not removed:
        console.print(f"No session with id {session_id}", style="yellow", markup=False)
        raise typer.Exit(code=2)
    console.print(f"Deleted session {session_id}", markup=False)


@app.command()
def graph(
    db: Path | None = DbOption,
    out: Path | None = typer.Option(None, "--out", help="Write graph JSON here instead of stdout"),
):
    """Export the full-corpus knowledge graph as JSON."""
    conn = _open_db(db)
    try:
        kg = build_graph(store.list_documents(conn), store.list_chunks(conn))
    finally:
        conn.close()
    _emit_json(kg.to_dict(), out)


@app.command()
def roadmap(
    query: str = typer.Argument(...),
    db: Path | None = DbOption,
    out: Path | None = typer.Option(None, "--out", help="Write graph JSON here instead of stdout"),
):
    """Export the query roadmap graph (why each chunk was retrieved) as JSON."""
    conn = _open_db(db)
    try:
        settings = _app_settings(conn).validate()
        retriever = Retriever(conn=conn, embedder=get_embedder(settings.embedding_provider_config()))
        contexts = retriever.retrieve(query, k=settings.rag.top_k)
    except NexusError as e:
        _fail(e)
    finally:
        conn.close()
    _emit_json(build_roadmap(query, contexts).to_dict(), out)


def _emit_json(data: dict, out: Path | None) -> None:
    text = json.dumps(data, ensure_ascii=False, indent=2)
    if out is None:
        console.print(text, markup=False, highlight=False)
        return
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(text, encoding="utf-8")
    console.print(f"Wrote {len(data['nodes'])} nodes, {len(data['links'])} links to {out}", markup=False)


@app.command()
def doctor(db: Path | None = DbOption):
    """Check the configured providers and the DB, and print actionable fixes."""
    conn = _open_db(db)
    ok = True
    try:
        settings = _app_settings(conn)

        uses_ollama = settings.provider == "ollama" or settings.embedding_provider == "local"
        if uses_ollama:
            console.print("Ollama:")
            try:
                models = check_ollama_connection(settings.ollama_url)
            except NexusError as e:
                console.print(f"- Not reachable at {settings.ollama_url}", style="red", markup=False)
                if isinstance(e, ConnectivityError) and e.hint:
                    console.print(f"  {e.hint}", style="yellow", markup=False)
                ok = False
            else:
                console.print(f"- Server reachable at {settings.ollama_url} ({len(models)} model(s) installed).", style="green", markup=False)
                wanted = []
                if settings.embedding_provider == "local":
                    wanted.append(settings.embedding_model or "nomic-embed-text")
                if settings.provider == "ollama":
                    wanted.append(settings.model_name or "llama3")
                for name in wanted:
                    if name in models or f"{name}:latest" in models:
                        console.print(f"- Model OK: {name}", style="green", markup=False)
                    else:
                        console.print(f"- Missing model: {name}", style="yellow", markup=False)
                        console.print(f"  Fix: `ollama pull {name}`", style="yellow", markup=False)
                        ok = False

        for kind, key in (("openai", settings.openai_key), ("openrouter", settings.openrouter_key)):
            if kind in (settings.provider, settings.embedding_provider) and not key:
                console.print(f"- Missing API key for {kind}.", style="red", markup=False)
                console.print(f"  Fix: set NEXUSRAG_{kind.upper()}_API_KEY or `nexusrag config set {kind}_key ...`", style="yellow", markup=False)
                ok = False

        console.print("\nDB:")
        documents = store.list_documents(conn)
        chunk_n = sum(store.count_chunks_by_document(conn).values())
        errored = [d for d in documents if d.status == "error"]
        console.print(f"- Documents: {len(documents)}", style="green" if documents else "yellow")
        console.print(f"- Chunks: {chunk_n}", style="green" if chunk_n else "yellow")
        if errored:
            console.print(f"- {len(errored)} document(s) failed to index.", style="yellow")
            console.print("  Fix: `nexusrag edit <id>` to re-index, or `nexusrag remove <id>`.", style="yellow", markup=False)
    finally:
        conn.close()

    if not ok:
        raise typer.Exit(code=1)


@config_app.command("show")
def config_show(db: Path | None = DbOption):
    """Print the effective settings (stored record over environment defaults)."""
    conn = _open_db(db)
    try:
        data = _app_settings(conn).to_dict()
    finally:
        conn.close()
    for secret in ("openai_key", "openrouter_key"):
        if data.get(secret):
            data[secret] = "***"
    console.print(json.dumps(data, ensure_ascii=False, indent=2), markup=False, highlight=False)


@config_app.command("set")
def config_set(
    key: str = typer.Argument(..., help="Field name, e.g. provider, strict_mode, rag.top_k"),
    value: str = typer.Argument(...),
    db: Path | None = DbOption,
):
    """Update one field of the stored settings record."""
    conn = _open_db(db)
    try:
        current = _app_settings(conn)
        if key.startswith("rag."):
            patch = {"rag": {key.split(".", 1)[1]: value}}
        elif key in AppSettings.__dataclass_fields__ and key != "rag":
            patch = {key: value}
        else:
            raise ValidationError(f"Unknown settings field: {key}")
        updated = AppSettings.from_dict(patch, base=current).validate()
        store.save_settings(conn, updated.to_dict())
    except (NexusError, ValueError) as e:
        console.print(str(e), style="red", markup=False)
        raise typer.Exit(code=2)
    finally:
        conn.close()
    console.print(f"{key} updated", markup=False)


@app.command()
def serve(
    db: Path | None = DbOption,
    host: str = typer.Option("127.0.0.1", "--host"),
    port: int = typer.Option(8000, "--port"),
):
    """Run the JSON API (FastAPI)."""
    try:
        import uvicorn
    except ImportError:
        console.print("Missing web dependencies. Install: `pip install -e '.[web]'`", style="red")
        raise typer.Exit(code=2)

    from .web.server import create_app

    app_ = create_app(db_path=str(db) if db else None)
    uvicorn.run(app_, host=host, port=int(port))


if __name__ == "__main__":
    app()
