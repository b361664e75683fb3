from __future__ import annotations

import logging
import re
import sqlite3
from dataclasses import dataclass

from .. import store
from ..config import AppSettings
from ..errors import ProviderError, ValidationError
from ..index.embedder import Embedder
from ..index.retriever import Retriever
from ..models import ChatSession, Message, RetrievalContext, new_id, now_ms
from .llm import ChatClient, ChatMessage


logger = logging.getLogger(__name__)

STRICT_PROMPT = (
    "You are a precise assistant. Answer ONLY from the retrieved passages below. "
    "If the answer is not in the passages, say you don't know. Do not use outside knowledge."
)
NO_CONTEXT_WARNING = "[Warning: no relevant documents were found. Tell the user you have no information on this.]"
CONTEXT_INSTRUCTION = "Instruction: answer the user's question citing the sources above."

TITLE_SYSTEM_PROMPT = "You are a precise title generator. Output ONLY the title, max 5 words."
NEW_SESSION_TITLE = "New chat"
MAX_TITLE_CHARS = 40
PREVIEW_CHARS = 50

_TITLE_PREFIX_RE = re.compile(r"^\s*title\s*:\s*", re.IGNORECASE)
_TITLE_QUOTES_RE = re.compile(r"[\"'«»“”]")


@dataclass(frozen=True)
class Answer:
    text: str
    contexts: list[RetrievalContext]
    session_id: str

    @property
    def sources(self) -> list[str]:
        return [f"{c.doc_title} ({c.score:.0%})" for c in self.contexts]


def format_context(contexts: list[RetrievalContext]) -> str:
    return "\n\n".join(
        f"[Source {i}] (title: {c.doc_title} - score: {round(c.score * 100)}%)\n{c.content}"
        for i, c in enumerate(contexts, start=1)
    )


def build_system_prompt(system_prompt: str, contexts: list[RetrievalContext], *, strict_mode: bool = False) -> str:
    prompt = STRICT_PROMPT if strict_mode else system_prompt
    if contexts:
        prompt += (
            "\n\n### CONTEXT (passages retrieved from the knowledge base):\n"
            f"{format_context(contexts)}\n\n{CONTEXT_INSTRUCTION}"
        )
    elif strict_mode:
        prompt += f"\n\n{NO_CONTEXT_WARNING}"
    return prompt


def generate_completion(
    messages: list[ChatMessage],
    client: ChatClient,
    contexts: list[RetrievalContext],
    *,
    system_prompt: str,
    strict_mode: bool = False,
) -> str:
    system = ChatMessage(role="system", content=build_system_prompt(system_prompt, contexts, strict_mode=strict_mode))
    return client.chat([system, *messages])


def generate_chat_title(client: ChatClient, first_user_message: str, first_reply: str) -> str:
    """Short (3-5 word) session title; falls back to the user's words on failure."""
    prompt = (
        "Write a very short title (3 to 5 words) for this conversation.\n\n"
        f"User question: {first_user_message}\n"
        f"Assistant answer: {first_reply}\n\n"
        "Rules:\n"
        "1. Output only the title (no quotes, no 'Title:', no explanation).\n"
        "2. At most 5 words."
    )
    try:
        raw = client.chat(
            [
                ChatMessage(role="system", content=TITLE_SYSTEM_PROMPT),
                ChatMessage(role="user", content=prompt),
            ]
        )
    except ProviderError as e:
        logger.warning("Title generation failed, using fallback: %s", e)
        return fallback_title(first_user_message)

    title = _TITLE_PREFIX_RE.sub("", _TITLE_QUOTES_RE.sub("", raw)).strip()
    return title[:MAX_TITLE_CHARS] or fallback_title(first_user_message)


def fallback_title(first_user_message: str) -> str:
    return first_user_message[:30] + "..."


def answer_question(
    conn: sqlite3.Connection,
    question: str,
    *,
    embedder: Embedder,
    chat_client: ChatClient,
    settings: AppSettings,
    session_id: str | None = None,
) -> Answer:
    """Retrieve, generate and record one exchange in a chat session.

    The user message is stored before any provider call. If retrieval or
    generation fails, an assistant error message is stored in the session
    and the error re-raised; the caller decides what to show.
    """
    question = question.strip()
    if not question:
        raise ValidationError("Question is empty.")

    session, is_new = _open_session(conn, session_id, question)

    history = store.messages_for_session(conn, session.id)
    user_msg = Message(id=new_id(), session_id=session.id, role="user", content=question, timestamp=now_ms())
    store.add_message(conn, user_msg)

    try:
        contexts = Retriever(conn=conn, embedder=embedder).retrieve(question, k=settings.rag.top_k)
        chat_history = [ChatMessage(role=m.role, content=m.content) for m in history if m.role != "system"]
        reply = generate_completion(
            [*chat_history, ChatMessage(role="user", content=question)],
            chat_client,
            contexts,
            system_prompt=settings.system_prompt,
            strict_mode=settings.strict_mode,
        )
    except ProviderError as e:
        store.add_message(
            conn,
            Message(
                id=new_id(),
                session_id=session.id,
                role="assistant",
                content=f"Sorry, an error occurred: {e}",
                timestamp=now_ms(),
            ),
        )
        raise

    store.add_message(
        conn,
        Message(
            id=new_id(),
            session_id=session.id,
            role="assistant",
            content=reply,
            timestamp=now_ms(),
            retrieved_context=contexts,
        ),
    )

    if is_new:
        title = generate_chat_title(chat_client, question, reply)
        titled = ChatSession(
            id=session.id,
            title=title,
            created_at=session.created_at,
            updated_at=now_ms(),
            preview=session.preview,
        )
        store.put_session(conn, titled)

    return Answer(text=reply.strip(), contexts=contexts, session_id=session.id)


def _open_session(conn: sqlite3.Connection, session_id: str | None, question: str) -> tuple[ChatSession, bool]:
    ts = now_ms()
    existing = store.get_session(conn, session_id) if session_id else None
    if existing is not None:
        session = ChatSession(
            id=existing.id,
            title=existing.title,
            created_at=existing.created_at,
            updated_at=ts,
            preview=question[:PREVIEW_CHARS],
        )
        store.put_session(conn, session)
        return session, False

    session = ChatSession(
        id=session_id or new_id(),
        title=NEW_SESSION_TITLE,
        created_at=ts,
        updated_at=ts,
        preview=question[:PREVIEW_CHARS],
    )
    store.put_session(conn, session)
    return session, True
