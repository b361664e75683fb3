import sqlite3
import unittest
from unittest import mock

from fakes import FailingEmbedder, KeywordEmbedder

from nexusrag import store
from nexusrag.config import RagConfig
from nexusrag.errors import ConfigurationError, ConnectivityError, ValidationError
from nexusrag.index.build import add_document, index_document, remove_document, update_document
from nexusrag.models import Document


VOCAB = ["graph", "vector", "chunk", "query"]
TEXT = " ".join(f"graph vector chunk{i}" for i in range(30))


def _doc(content: str = TEXT, doc_id: str = "doc1") -> Document:
    return Document(id=doc_id, title="Notes", content=content, created_at=1, status="indexing")


def _conn():
    conn = store.connect(":memory:")
    store.init_db(conn)
    return conn


class TestIndexDocument(unittest.TestCase):
    def test_probe_then_one_call_per_chunk_with_stable_ids(self):
        emb = KeywordEmbedder(VOCAB)
        chunks = index_document(_doc(), emb, RagConfig(chunk_size=20, chunk_overlap=5))

        self.assertEqual(emb.calls[0], "test")
        self.assertEqual(len(emb.calls), len(chunks) + 1)
        self.assertEqual([c.id for c in chunks], [f"doc1_chk_{i}" for i in range(len(chunks))])
        self.assertTrue(all(c.vector is not None for c in chunks))
        self.assertTrue(all(c.doc_id == "doc1" for c in chunks))

    def test_reindexing_is_reproducible(self):
        rag = RagConfig(chunk_size=20, chunk_overlap=5)
        a = index_document(_doc(), KeywordEmbedder(VOCAB), rag)
        b = index_document(_doc(), KeywordEmbedder(VOCAB), rag)
        self.assertEqual([(c.id, c.text) for c in a], [(c.id, c.text) for c in b])

    def test_parallel_embedding_keeps_order(self):
        rag = RagConfig(chunk_size=10, chunk_overlap=2)
        serial = index_document(_doc(), KeywordEmbedder(VOCAB), rag)
        parallel = index_document(_doc(), KeywordEmbedder(VOCAB), rag, max_workers=4)
        self.assertEqual(serial, parallel)

    def test_probe_failure_aborts_before_chunking(self):
        emb = KeywordEmbedder(VOCAB, fail_after=0)
        with self.assertRaises(ConnectivityError):
            index_document(_doc(), emb, RagConfig(chunk_size=20, chunk_overlap=5))
        self.assertEqual(emb.calls, ["test"])

    def test_mid_run_failure_aborts_everything(self):
        emb = KeywordEmbedder(VOCAB, fail_after=3)
        with self.assertRaises(ConnectivityError):
            index_document(_doc(), emb, RagConfig(chunk_size=10, chunk_overlap=2))

    def test_validation(self):
        with self.assertRaises(ValidationError):
            index_document(_doc(content="   "), KeywordEmbedder(VOCAB), RagConfig())
        with self.assertRaises(ValidationError):
            index_document(_doc(), KeywordEmbedder(VOCAB), RagConfig(chunk_size=10, chunk_overlap=10))


class TestAddDocument(unittest.TestCase):
    def test_success_marks_ready_and_persists_chunks(self):
        conn = _conn()
        doc, chunks = add_document(
            conn, title="Notes", content=TEXT, embedder=KeywordEmbedder(VOCAB), rag=RagConfig(chunk_size=20, chunk_overlap=5)
        )
        self.assertEqual(doc.status, "ready")
        self.assertEqual(store.get_document(conn, doc.id).status, "ready")
        self.assertEqual(store.chunks_for_document(conn, doc.id), chunks)

    def test_failure_marks_error_without_chunks(self):
        conn = _conn()
        with self.assertRaises(ConfigurationError):
            add_document(
                conn,
                title="Notes",
                content=TEXT,
                embedder=FailingEmbedder(ConfigurationError("No API key configured for openai.")),
                rag=RagConfig(),
                doc_id="bad",
            )
        self.assertEqual(store.get_document(conn, "bad").status, "error")
        self.assertEqual(store.list_chunks(conn), [])

    def test_failed_final_write_keeps_no_chunks_and_marks_error(self):
        conn = _conn()
        upsert = store._upsert_document

        def fail_on_ready(c, doc):
            if doc.status == "ready":
                raise sqlite3.OperationalError("disk I/O error")
            upsert(c, doc)

        with mock.patch("nexusrag.store._upsert_document", side_effect=fail_on_ready):
            with self.assertRaises(sqlite3.OperationalError):
                add_document(
                    conn,
                    title="Notes",
                    content=TEXT,
                    embedder=KeywordEmbedder(VOCAB),
                    rag=RagConfig(chunk_size=20, chunk_overlap=5),
                    doc_id="doc1",
                )
        self.assertEqual(store.get_document(conn, "doc1").status, "error")
        self.assertEqual(store.chunks_for_document(conn, "doc1"), [])

    def test_empty_content_rejected_before_anything_is_stored(self):
        conn = _conn()
        with self.assertRaises(ValidationError):
            add_document(conn, title="x", content=" \n", embedder=KeywordEmbedder(VOCAB), rag=RagConfig())
        self.assertEqual(store.list_documents(conn), [])

    def test_update_replaces_chunks_under_same_id(self):
        conn = _conn()
        rag = RagConfig(chunk_size=20, chunk_overlap=5)
        doc, _ = add_document(conn, title="Notes", content=TEXT, embedder=KeywordEmbedder(VOCAB), rag=rag)
        new_doc, new_chunks = update_document(
            conn, doc.id, title="Renamed", content="query vector graph only", embedder=KeywordEmbedder(VOCAB), rag=rag
        )
        self.assertEqual(new_doc.id, doc.id)
        self.assertEqual(store.get_document(conn, doc.id).title, "Renamed")
        self.assertEqual(len(new_chunks), 1)
        self.assertEqual(store.list_chunks(conn), new_chunks)

    def test_remove_cascades_to_chunks(self):
        conn = _conn()
        rag = RagConfig(chunk_size=20, chunk_overlap=5)
        a, _ = add_document(conn, title="A", content=TEXT, embedder=KeywordEmbedder(VOCAB), rag=rag)
        b, b_chunks = add_document(conn, title="B", content="graph query text here", embedder=KeywordEmbedder(VOCAB), rag=rag)

        self.assertTrue(remove_document(conn, a.id))
        self.assertIsNone(store.get_document(conn, a.id))
        self.assertEqual(store.list_chunks(conn), b_chunks)
        self.assertFalse(remove_document(conn, a.id))


if __name__ == "__main__":
    unittest.main()
