import json
import os
import tempfile
import unittest

from typer.testing import CliRunner

from nexusrag import store
from nexusrag.cli import app
from nexusrag.models import ChatSession, Document


class TestCli(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.db = os.path.join(self._tmp.name, "nexus.db")
        self.runner = CliRunner()

    def tearDown(self):
        self._tmp.cleanup()

    def test_config_set_and_show(self):
        r = self.runner.invoke(app, ["config", "set", "rag.top_k", "7", "--db", self.db])
        self.assertEqual(r.exit_code, 0, r.output)
        r = self.runner.invoke(app, ["config", "set", "openai_key", "sk-secret", "--db", self.db])
        self.assertEqual(r.exit_code, 0, r.output)

        r = self.runner.invoke(app, ["config", "show", "--db", self.db])
        self.assertEqual(r.exit_code, 0, r.output)
        shown = json.loads(r.stdout)
        self.assertEqual(shown["rag"]["top_k"], 7)
        self.assertEqual(shown["openai_key"], "***")

    def test_config_set_rejects_invalid_values(self):
        r = self.runner.invoke(app, ["config", "set", "rag.chunk_overlap", "500", "--db", self.db])
        self.assertEqual(r.exit_code, 2)
        r = self.runner.invoke(app, ["config", "set", "colour", "blue", "--db", self.db])
        self.assertEqual(r.exit_code, 2)

    def test_docs_sessions_and_removal(self):
        conn = store.connect(self.db)
        store.init_db(conn)
        store.put_document(conn, Document(id="d1", title="Crypto", content="x", created_at=1, status="error"))
        store.put_session(conn, ChatSession(id="s1", title="Ledger Basics", created_at=1, updated_at=2, preview="hi"))
        conn.close()

        r = self.runner.invoke(app, ["docs", "--db", self.db])
        self.assertEqual(r.exit_code, 0, r.output)
        self.assertIn("Crypto", r.output)

        r = self.runner.invoke(app, ["sessions", "--db", self.db])
        self.assertIn("Ledger Basics", r.output)

        self.assertEqual(self.runner.invoke(app, ["remove", "d1", "--db", self.db]).exit_code, 0)
        self.assertEqual(self.runner.invoke(app, ["remove", "d1", "--db", self.db]).exit_code, 2)
        self.assertEqual(self.runner.invoke(app, ["delete-session", "s1", "--db", self.db]).exit_code, 0)

    def test_graph_export(self):
        out = os.path.join(self._tmp.name, "graph.json")
        r = self.runner.invoke(app, ["graph", "--db", self.db, "--out", out])
        self.assertEqual(r.exit_code, 0, r.output)
        with open(out, encoding="utf-8") as f:
            self.assertEqual(json.load(f), {"nodes": [], "links": []})


if __name__ == "__main__":
    unittest.main()
