from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from mcpauth_cli.util.client_info import (
    ClientIdentity,
    resolve_client_identity,
    resolve_client_secret,
)
from mcpauth_cli.util.credential_store import CredentialStore
from mcpauth_cli.util.oauth_token import OAuthToken
from mcpauth_cli.util.server_config import ServerAuth


class ClientIdentityResolutionTest(unittest.TestCase):
    def test_config_client_id_wins(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            credentials = CredentialStore(Path(temp_dir) / "credentials.json")
            credentials.remember_client(
                "linear", client_id="cached", client_secret=None, now=1
            )
            auth = ServerAuth(
                client_id="configured",
                client_id_env="LINEAR_CLIENT_ID",
                client_secret_env="LINEAR_SECRET",
            )
            identity = resolve_client_identity(
                auth,
                server_id="linear",
                credentials=credentials,
                environ={"LINEAR_CLIENT_ID": "from-env", "LINEAR_SECRET": "s"},
            )
            self.assertEqual(identity, ClientIdentity("configured", "s", "config"))

    def test_env_then_cache(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            credentials = CredentialStore(Path(temp_dir) / "credentials.json")
            credentials.remember_client(
                "linear", client_id="cached", client_secret="cached-secret", now=1
            )
            auth = ServerAuth(client_id_env="LINEAR_CLIENT_ID")

            from_env = resolve_client_identity(
                auth,
                server_id="linear",
                credentials=credentials,
                environ={"LINEAR_CLIENT_ID": " from-env "},
            )
            self.assertEqual(from_env, ClientIdentity("from-env", None, "env"))

            from_cache = resolve_client_identity(
                auth, server_id="linear", credentials=credentials, environ={}
            )
            self.assertEqual(
                from_cache, ClientIdentity("cached", "cached-secret", "cache")
            )

    def test_none_means_register(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            credentials = CredentialStore(Path(temp_dir) / "credentials.json")
            self.assertIsNone(
                resolve_client_identity(
                    ServerAuth(), server_id="linear", credentials=credentials, environ={}
                )
            )

    def test_client_secret_from_config_or_env(self) -> None:
        self.assertEqual(
            resolve_client_secret(ServerAuth(client_secret="direct"), environ={}),
            "direct",
        )
        self.assertEqual(
            resolve_client_secret(
                ServerAuth(client_secret_env="SECRET"), environ={"SECRET": "env"}
            ),
            "env",
        )
        self.assertIsNone(resolve_client_secret(ServerAuth(), environ={}))


class CredentialStoreTest(unittest.TestCase):
    def test_save_token_keeps_refresh_and_client(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            store = CredentialStore(Path(temp_dir) / "credentials.json")
            store.remember_client("linear", client_id="c1", client_secret="s1", now=10)
            store.save_token(
                "linear",
                OAuthToken(
                    access_token="a1",
                    refresh_token="r1",
                    expires_in=60,
                    token_type="Bearer",
                    client_id="c1",
                ),
                now=0,
            )
            store.save_token(
                "linear", OAuthToken(access_token="a2", client_id="c1"), now=100
            )

            saved = store.get("linear")
            assert saved is not None
            self.assertEqual(saved.access_token, "a2")
            self.assertEqual(saved.refresh_token, "r1")
            self.assertEqual(saved.client_id, "c1")
            self.assertEqual(saved.client_secret, "s1")
            self.assertEqual(saved.updated_at, 100)
            self.assertIsNone(saved.expires_at)

    def test_new_client_drops_cached_secret(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            store = CredentialStore(Path(temp_dir) / "credentials.json")
            store.remember_client("linear", client_id="c1", client_secret="s1", now=1)
            saved = store.save_token(
                "linear",
                OAuthToken(access_token="a", expires_in=60, client_id="c2"),
                now=0,
            )
            self.assertEqual(saved.client_id, "c2")
            self.assertIsNone(saved.client_secret)
            self.assertEqual(saved.expires_at, "1970-01-01T00:01:00Z")

    def test_missing_store_is_empty(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            store = CredentialStore(Path(temp_dir) / "credentials.json")
            self.assertIsNone(store.get("linear"))


if __name__ == "__main__":
    unittest.main()
