"""Knowledge-graph views derived from documents and chunks.

Both builders are pure: the same inputs always give the same nodes and links
in the same order. Graphs are views; the store stays the source of truth.
"""

from __future__ import annotations

from typing import Iterable

from ..models import Document, GraphLink, GraphNode, KnowledgeGraph, RetrievalContext, TextChunk
from .extract import entity_id, extract_entities


QUERY_ROOT_ID = "query_root"
PREVIEW_CHARS = 50

# Visual weights (render hints only).
DOC_VAL = 20
CHUNK_VAL = 10
ENTITY_VAL = 5
ROADMAP_QUERY_VAL = 30
ROADMAP_CHUNK_VAL = 15
ROADMAP_DOC_VAL = 25
ROADMAP_ENTITY_VAL = 8


class _GraphAccumulator:
    def __init__(self) -> None:
        self.nodes: list[GraphNode] = []
        self.links: list[GraphLink] = []
        self._ids: set[str] = set()

    def has(self, node_id: str) -> bool:
        return node_id in self._ids

    def add_node(self, node: GraphNode) -> bool:
        if node.id in self._ids:
            return False
        self._ids.add(node.id)
        self.nodes.append(node)
        return True

    def add_link(self, link: GraphLink) -> None:
        if link.source in self._ids and link.target in self._ids:
            self.links.append(link)

    def graph(self) -> KnowledgeGraph:
        return KnowledgeGraph(nodes=self.nodes, links=self.links)


def build_graph(documents: Iterable[Document], chunks: Iterable[TextChunk]) -> KnowledgeGraph:
    """Full-corpus graph: doc -contains-> chunk -mentions-> entity."""
    acc = _GraphAccumulator()

    for doc in documents:
        acc.add_node(GraphNode(id=doc.id, type="doc", label=doc.title, val=DOC_VAL))

    for chunk in chunks:
        preview = chunk.text[:PREVIEW_CHARS] + "..."
        acc.add_node(
            GraphNode(
                id=chunk.id,
                type="chunk",
                label="Part",
                val=CHUNK_VAL,
                data={"text": preview, "full_text": chunk.text, "doc_id": chunk.doc_id},
            )
        )
        # Chunks of a deleted document keep no dangling link.
        acc.add_link(GraphLink(source=chunk.doc_id, target=chunk.id, type="contains"))

        for term in extract_entities(chunk.text):
            eid = entity_id(term)
            acc.add_node(GraphNode(id=eid, type="entity", label=term, val=ENTITY_VAL))
            acc.add_link(GraphLink(source=chunk.id, target=eid, type="mentions"))

    return acc.graph()


def build_roadmap(query: str, contexts: Iterable[RetrievalContext]) -> KnowledgeGraph:
    """Query-centric graph explaining why each chunk was retrieved."""
    acc = _GraphAccumulator()
    acc.add_node(GraphNode(id=QUERY_ROOT_ID, type="query", label=query, val=ROADMAP_QUERY_VAL))

    for idx, ctx in enumerate(contexts, start=1):
        if acc.add_node(
            GraphNode(
                id=ctx.chunk_id,
                type="chunk",
                label=f"Result #{idx}",
                val=ROADMAP_CHUNK_VAL,
                data=ctx.to_dict(),
            )
        ):
            acc.add_link(GraphLink(source=QUERY_ROOT_ID, target=ctx.chunk_id, type="similar_to", weight=ctx.score))

        acc.add_node(GraphNode(id=ctx.doc_id, type="doc", label=ctx.doc_title, val=ROADMAP_DOC_VAL))
        acc.add_link(GraphLink(source=ctx.chunk_id, target=ctx.doc_id, type="contains"))

        for term in ctx.related_entities:
            eid = entity_id(term)
            acc.add_node(GraphNode(id=eid, type="entity", label=term, val=ROADMAP_ENTITY_VAL))
            acc.add_link(GraphLink(source=ctx.chunk_id, target=eid, type="mentions"))

    return acc.graph()
