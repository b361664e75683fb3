import unittest

from fakes import FailingEmbedder, KeywordEmbedder, VectorEmbedder, unit

from nexusrag import store
from nexusrag.config import RagConfig
from nexusrag.errors import ConnectivityError
from nexusrag.index.build import add_document
from nexusrag.index.retriever import UNKNOWN_DOCUMENT, Retriever, retrieve_context
from nexusrag.models import Document, TextChunk


DOCS = [Document(id="d1", title="Ledger notes", content="x", created_at=1, status="ready")]


def _chunks(scores):
    return [
        TextChunk(id=f"d1_chk_{i}", doc_id="d1", text=f"blockchain ledger entry number {i}", vector=unit(s))
        for i, s in enumerate(scores)
    ]


class TestRetrieveContext(unittest.TestCase):
    def test_threshold_sort_and_top_k(self):
        chunks = _chunks([0.9, 0.5, 0.2, 0.8])
        res = retrieve_context("ledger", chunks, VectorEmbedder([1.0, 0.0]), 2, DOCS)
        self.assertEqual([r.chunk_id for r in res], ["d1_chk_0", "d1_chk_3"])
        self.assertAlmostEqual(res[0].score, 0.9)
        self.assertAlmostEqual(res[1].score, 0.8)

    def test_below_threshold_excluded_even_with_room(self):
        chunks = _chunks([0.9, 0.5, 0.2, 0.8])
        res = retrieve_context("ledger", chunks, VectorEmbedder([1.0, 0.0]), 10, DOCS)
        self.assertEqual(len(res), 3)
        self.assertTrue(all(r.score > 0.25 for r in res))
        scores = [r.score for r in res]
        self.assertEqual(scores, sorted(scores, reverse=True))

    def test_exactly_threshold_is_excluded(self):
        chunks = [TextChunk(id="c", doc_id="d1", text="blockchain text", vector=[1.0, 0.0])]
        res = retrieve_context("q", chunks, VectorEmbedder([1.0, 0.0]), 5, DOCS, threshold=1.0)
        self.assertEqual(res, [])

    def test_chunks_without_vectors_never_surface(self):
        chunks = [
            TextChunk(id="a", doc_id="d1", text="no vector here", vector=None),
            TextChunk(id="b", doc_id="d1", text="wrong dimension", vector=[1.0, 0.0, 0.0]),
            TextChunk(id="c", doc_id="d1", text="good vector here", vector=[1.0, 0.0]),
        ]
        res = retrieve_context("q", chunks, VectorEmbedder([1.0, 0.0]), 5, DOCS)
        self.assertEqual([r.chunk_id for r in res], ["c"])

    def test_empty_query_or_corpus_skips_provider(self):
        emb = VectorEmbedder([1.0, 0.0])
        self.assertEqual(retrieve_context("", _chunks([0.9]), emb, 5, DOCS), [])
        self.assertEqual(retrieve_context("   ", _chunks([0.9]), emb, 5, DOCS), [])
        self.assertEqual(retrieve_context("ledger", [], emb, 5, DOCS), [])
        self.assertEqual(emb.calls, 0)

    def test_metadata_and_entities(self):
        chunks = _chunks([0.9]) + [TextChunk(id="gone_chk_0", doc_id="gone", text="orphan blockchain", vector=unit(0.7))]
        res = retrieve_context("ledger", chunks, VectorEmbedder([1.0, 0.0]), 5, DOCS)
        self.assertEqual(res[0].doc_title, "Ledger notes")
        self.assertEqual(res[0].related_entities, ["blockchain", "ledger", "entry", "number"])
        self.assertEqual(res[1].doc_title, UNKNOWN_DOCUMENT)

    def test_provider_failure_propagates(self):
        with self.assertRaises(ConnectivityError):
            retrieve_context("ledger", _chunks([0.9]), FailingEmbedder(ConnectivityError("down")), 5, DOCS)


class TestRetriever(unittest.TestCase):
    def test_end_to_end_over_store(self):
        conn = store.connect(":memory:")
        store.init_db(conn)
        emb = KeywordEmbedder(["graph", "vector", "ledger", "blockchain"])
        rag = RagConfig(chunk_size=8, chunk_overlap=2)
        add_document(conn, title="Graphs", content="graph graph vector graph theory notes " * 3, embedder=emb, rag=rag)
        add_document(conn, title="Ledgers", content="blockchain ledger blockchain ledger consensus " * 3, embedder=emb, rag=rag)

        hits = Retriever(conn=conn, embedder=emb).retrieve("blockchain ledger", k=2)
        self.assertTrue(hits)
        self.assertLessEqual(len(hits), 2)
        self.assertTrue(all(h.doc_title == "Ledgers" for h in hits))
        self.assertIn("blockchain", hits[0].related_entities)


if __name__ == "__main__":
    unittest.main()
