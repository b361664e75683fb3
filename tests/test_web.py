import os
import tempfile
import unittest

from fakes import KeywordEmbedder, RecordingChatClient

from nexusrag.errors import ConnectivityError

try:
    from fastapi.testclient import TestClient
except ImportError:  # pragma: no cover - web extra not installed
    TestClient = None


VOCAB = ["blockchain", "ledger", "recipe", "flour"]
CRYPTO = "blockchain ledger consensus blockchain ledger mining " * 5


@unittest.skipIf(TestClient is None, "fastapi not installed")
class TestWebApi(unittest.TestCase):
    def setUp(self):
        from nexusrag.web.server import create_app

        self._tmp = tempfile.TemporaryDirectory()
        self.chat = RecordingChatClient(["The ledger is shared.", "Ledger Basics"])
        app = create_app(
            db_path=os.path.join(self._tmp.name, "nexus.db"),
            embedder=KeywordEmbedder(VOCAB),
            chat_client=self.chat,
        )
        self.client = TestClient(app)
        self.client.put("/api/settings", json={"rag": {"chunk_size": 10, "chunk_overlap": 2, "top_k": 3}})

    def tearDown(self):
        self.client.close()
        self._tmp.cleanup()

    def _add(self, title="Crypto", content=CRYPTO):
        r = self.client.post("/api/documents", json={"title": title, "content": content})
        self.assertEqual(r.status_code, 200, r.text)
        return r.json()

    def test_document_lifecycle(self):
        created = self._add()
        doc_id = created["document"]["id"]
        self.assertEqual(created["document"]["status"], "ready")
        self.assertGreater(created["chunks"], 0)

        listed = self.client.get("/api/documents").json()["documents"]
        self.assertEqual([(d["id"], d["chunks"]) for d in listed], [(doc_id, created["chunks"])])

        edited = self.client.put(f"/api/documents/{doc_id}", json={"content": "recipe flour recipe flour " * 5}).json()
        self.assertEqual(edited["document"]["id"], doc_id)
        self.assertEqual(edited["document"]["title"], "Crypto")

        self.assertEqual(self.client.delete(f"/api/documents/{doc_id}").status_code, 200)
        self.assertEqual(self.client.delete(f"/api/documents/{doc_id}").status_code, 404)
        self.assertEqual(self.client.get("/api/documents").json()["documents"], [])

    def test_empty_content_is_bad_request(self):
        r = self.client.post("/api/documents", json={"title": "Empty", "content": "  "})
        self.assertEqual(r.status_code, 400)
        self.assertEqual(r.json()["kind"], "ValidationError")

    def test_upload_text_file(self):
        r = self.client.post(
            "/api/documents/upload",
            files={"file": ("ledger-notes.txt", CRYPTO.encode("utf-8"), "text/plain")},
        )
        self.assertEqual(r.status_code, 200, r.text)
        self.assertEqual(r.json()["document"]["title"], "ledger-notes")

    def test_upload_unsupported_file(self):
        r = self.client.post("/api/documents/upload", files={"file": ("x.png", b"\x89PNG", "image/png")})
        self.assertEqual(r.status_code, 400)

    def test_search_and_roadmap(self):
        self._add()
        self._add(title="Baking", content="recipe flour oven recipe flour sugar " * 5)

        contexts = self.client.post("/api/search", json={"query": "blockchain ledger"}).json()["contexts"]
        self.assertTrue(contexts)
        self.assertLessEqual(len(contexts), 3)
        self.assertTrue(all(c["doc_title"] == "Crypto" for c in contexts))
        scores = [c["score"] for c in contexts]
        self.assertEqual(scores, sorted(scores, reverse=True))

        graph = self.client.post("/api/roadmap", json={"query": "blockchain ledger"}).json()["graph"]
        ids = {n["id"] for n in graph["nodes"]}
        self.assertIn("query_root", ids)
        self.assertTrue(all(l["source"] in ids and l["target"] in ids for l in graph["links"]))

        self.assertEqual(self.client.post("/api/search", json={"query": " "}).status_code, 400)

    def test_full_graph(self):
        self._add()
        graph = self.client.get("/api/graph").json()["graph"]
        types = {n["type"] for n in graph["nodes"]}
        self.assertEqual(types, {"doc", "chunk", "entity"})

    def test_ask_creates_session(self):
        self._add()
        r = self.client.post("/api/ask", json={"question": "what is a blockchain ledger"})
        self.assertEqual(r.status_code, 200, r.text)
        body = r.json()
        self.assertEqual(body["answer"], "The ledger is shared.")

        sessions = self.client.get("/api/sessions").json()["sessions"]
        self.assertEqual([(s["id"], s["title"]) for s in sessions], [(body["session_id"], "Ledger Basics")])

        msgs = self.client.get(f"/api/sessions/{body['session_id']}/messages").json()["messages"]
        self.assertEqual([m["role"] for m in msgs], ["user", "assistant"])

        self.assertEqual(self.client.delete(f"/api/sessions/{body['session_id']}").status_code, 200)
        self.assertEqual(self.client.get("/api/sessions").json()["sessions"], [])

    def test_ask_provider_failure_is_bad_gateway(self):
        self.chat.exc = ConnectivityError("Ollama not reachable", provider="ollama", hint="Fix: start Ollama")
        r = self.client.post("/api/ask", json={"question": "hello there"})
        self.assertEqual(r.status_code, 502)
        self.assertEqual(r.json()["hint"], "Fix: start Ollama")

    def test_settings_round_trip(self):
        r = self.client.put("/api/settings", json={"strict_mode": True, "provider": "openai"})
        self.assertEqual(r.status_code, 200)
        s = self.client.get("/api/settings").json()["settings"]
        self.assertIs(s["strict_mode"], True)
        self.assertEqual(s["provider"], "openai")
        self.assertEqual(s["rag"]["top_k"], 3)

        bad = self.client.put("/api/settings", json={"rag": {"chunk_size": 5, "chunk_overlap": 5}})
        self.assertEqual(bad.status_code, 400)

    def test_non_numeric_top_k_is_bad_request(self):
        r = self.client.put("/api/settings", json={"rag": {"top_k": "abc"}})
        self.assertEqual(r.status_code, 400)
        self.assertEqual(r.json()["kind"], "ValidationError")
        self.assertEqual(self.client.get("/api/settings").json()["settings"]["rag"]["top_k"], 3)

    def test_search_validates_k(self):
        self._add()
        for bad in ("abc", 0):
            with self.subTest(k=bad):
                r = self.client.post("/api/search", json={"query": "blockchain ledger", "k": bad})
                self.assertEqual(r.status_code, 400)
        r = self.client.post("/api/search", json={"query": "blockchain ledger", "k": "1"})
        self.assertEqual(len(r.json()["contexts"]), 1)


if __name__ == "__main__":
    unittest.main()
