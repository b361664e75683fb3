from __future__ import annotations

import random
from dataclasses import dataclass

from ..models import KnowledgeGraph


QUERY_ANCHOR = (0.0, -200.0)
SPREAD = 800.0


@dataclass(frozen=True)
class NodePosition:
    x: float
    y: float
    fixed: bool = False


def carry_layout(
    previous: dict[str, NodePosition] | None,
    graph: KnowledgeGraph,
    *,
    seed: int = 0,
) -> dict[str, NodePosition]:
    """Seed positions for ``graph``, reusing those of nodes seen before.

    Pure: ``previous`` is not modified. Query nodes are pinned at the
    anchor; new nodes are scattered in a square of side ``SPREAD`` by a
    seeded RNG so a given (previous, graph, seed) always lays out the same.
    Any physics simulation belongs to the renderer.
    """
    previous = previous or {}
    rng = random.Random(seed)
    out: dict[str, NodePosition] = {}
    for node in graph.nodes:
        if node.type == "query":
            out[node.id] = NodePosition(x=QUERY_ANCHOR[0], y=QUERY_ANCHOR[1], fixed=True)
            continue
        prev = previous.get(node.id)
        if prev is not None:
            out[node.id] = prev
            continue
        out[node.id] = NodePosition(
            x=(rng.random() - 0.5) * SPREAD,
            y=(rng.random() - 0.5) * SPREAD,
        )
    return out
