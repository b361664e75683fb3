from __future__ import annotations

import time
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any, Literal


DocumentStatus = Literal["indexing", "ready", "error"]
NodeType = Literal["doc", "chunk", "entity", "query"]
LinkType = Literal["contains", "mentions", "related", "similar_to"]
Role = Literal["system", "user", "assistant"]


def new_id() -> str:
    return uuid.uuid4().hex


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class Document:
    id: str
    title: str
    content: str
    created_at: int
    status: DocumentStatus = "indexing"

    def with_status(self, status: DocumentStatus) -> "Document":
        return Document(
            id=self.id,
            title=self.title,
            content=self.content,
            created_at=self.created_at,
            status=status,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class TextChunk:
    id: str
    doc_id: str
    text: str
    vector: list[float] | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def chunk_id_for(doc_id: str, index: int) -> str:
    # Stable across re-chunking: depends only on the parent id and position.
    return f"{doc_id}_chk_{index}"


@dataclass(frozen=True)
class RetrievalContext:
    chunk_id: str
    doc_id: str
    doc_title: str
    content: str
    score: float
    related_entities: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "RetrievalContext":
        return cls(
            chunk_id=str(d["chunk_id"]),
            doc_id=str(d["doc_id"]),
            doc_title=str(d["doc_title"]),
            content=str(d["content"]),
            score=float(d["score"]),
            related_entities=[str(e) for e in d.get("related_entities") or []],
        )


@dataclass(frozen=True)
class GraphNode:
    id: str
    type: NodeType
    label: str
    data: dict[str, Any] | None = None
    val: float | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"id": self.id, "type": self.type, "label": self.label}
        if self.data is not None:
            d["data"] = self.data
        if self.val is not None:
            d["val"] = self.val
        return d


@dataclass(frozen=True)
class GraphLink:
    source: str
    target: str
    type: LinkType
    weight: float | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"source": self.source, "target": self.target, "type": self.type}
        if self.weight is not None:
            d["weight"] = self.weight
        return d


@dataclass(frozen=True)
class KnowledgeGraph:
    nodes: list[GraphNode] = field(default_factory=list)
    links: list[GraphLink] = field(default_factory=list)

    def node_ids(self) -> set[str]:
        return {n.id for n in self.nodes}

    def to_dict(self) -> dict[str, Any]:
        return {
            "nodes": [n.to_dict() for n in self.nodes],
            "links": [link.to_dict() for link in self.links],
        }


@dataclass(frozen=True)
class ChatSession:
    id: str
    title: str
    created_at: int
    updated_at: int
    preview: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Message:
    id: str
    session_id: str
    role: Role
    content: str
    timestamp: int
    retrieved_context: list[RetrievalContext] | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
