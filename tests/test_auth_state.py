from __future__ import annotations

import json
import os
import stat
import tempfile
import unittest
from dataclasses import replace
from pathlib import Path

from mcpauth_cli.util.auth_state import PendingAuthorization, PendingStore


def make_pending(server_id: str = "linear", state: str = "state-1") -> PendingAuthorization:
    return PendingAuthorization(
        server_id=server_id,
        client_id="client-1",
        redirect_uri="http://localhost:43123/callback",
        code_verifier="verifier",
        state=state,
        token_endpoint="https://auth.example.com/token",
        resource_value="https://api.example.com/mcp",
        authorization_url="https://auth.example.com/authorize?x=1",
        created_at=1700000000,
    )


class PendingAuthorizationTest(unittest.TestCase):
    def test_from_doc_roundtrip_drops_missing_optionals(self) -> None:
        pending = make_pending()
        doc = pending.to_doc()
        self.assertNotIn("client_secret", doc)
        self.assertEqual(PendingAuthorization.from_doc(doc), pending)

    def test_validate_missing_state(self) -> None:
        doc = make_pending().to_doc()
        doc["state"] = " "
        with self.assertRaisesRegex(
            ValueError, "invalid pending authorization: missing state"
        ):
            PendingAuthorization.from_doc(doc)


class PendingStoreTest(unittest.TestCase):
    def test_put_get_and_take_once(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            store = PendingStore(Path(temp_dir) / "pending.json")
            self.assertIsNone(store.put(make_pending()))

            self.assertEqual(store.get("linear"), make_pending())
            self.assertEqual(store.server_ids(), ["linear"])
            self.assertEqual(store.take("linear"), make_pending())
            self.assertIsNone(store.take("linear"))
            self.assertIsNone(store.get("linear"))

    def test_put_replaces_previous_record(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            store = PendingStore(Path(temp_dir) / "pending.json")
            store.put(make_pending(state="old"))
            replaced = store.put(make_pending(state="new"))

            assert replaced is not None
            self.assertEqual(replaced.state, "old")
            stored = store.get("linear")
            assert stored is not None
            self.assertEqual(stored.state, "new")

    def test_take_with_stale_state_leaves_record(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            store = PendingStore(Path(temp_dir) / "pending.json")
            store.put(make_pending(state="current"))

            self.assertIsNone(store.take("linear", expected_state="stale"))
            self.assertIsNotNone(store.get("linear"))
            taken = store.take("linear", expected_state="current")
            assert taken is not None
            self.assertEqual(taken.state, "current")

    def test_server_ids_are_independent(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            store = PendingStore(Path(temp_dir) / "pending.json")
            store.put(make_pending("a"))
            store.put(replace(make_pending("b"), client_secret="s3cret"))

            store.take("a")
            self.assertEqual(store.server_ids(), ["b"])
            remaining = store.get("b")
            assert remaining is not None
            self.assertEqual(remaining.client_secret, "s3cret")

    def test_file_is_private_and_versioned(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / "state" / "pending.json"
            PendingStore(path).put(make_pending())

            doc = json.loads(path.read_text(encoding="utf-8"))
            self.assertEqual(doc["version"], 1)
            self.assertIn("linear", doc["pending"])
            if os.name == "posix":
                self.assertEqual(stat.S_IMODE(path.stat().st_mode), 0o600)

    def test_unsupported_version(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / "pending.json"
            path.write_text('{"version": 2, "pending": {}}', encoding="utf-8")
            with self.assertRaisesRegex(ValueError, "unsupported pending auth file version"):
                PendingStore(path).get("linear")


if __name__ == "__main__":
    unittest.main()
