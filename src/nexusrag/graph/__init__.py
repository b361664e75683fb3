"""Knowledge-graph views (corpus graph and query roadmap).

Entity nodes are keyword heuristics shared with retrieval, so a term seen in
a retrieval context maps to the same node id as in the corpus graph.
"""
