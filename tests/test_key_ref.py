from __future__ import annotations

import json
import tempfile
import unittest
from pathlib import Path

from mcpauth_cli.util.key_ref import (
    KeyRef,
    parse_key_ref,
    read_env_file,
    write_env_var,
    write_key_ref_value,
)


class ParseKeyRefTest(unittest.TestCase):
    def test_schemes(self) -> None:
        self.assertEqual(
            parse_key_ref("env://TOKEN"),
            KeyRef(kind="env", path=None, name="TOKEN", raw="env://TOKEN"),
        )
        self.assertEqual(
            parse_key_ref(".env://secrets/.env:LINEAR_TOKEN"),
            KeyRef(
                kind="dotenv",
                path="secrets/.env",
                name="LINEAR_TOKEN",
                raw=".env://secrets/.env:LINEAR_TOKEN",
            ),
        )
        self.assertEqual(parse_key_ref("json://tok.json").path, "tok.json")
        self.assertEqual(parse_key_ref("tok.json").kind, "json")

    def test_invalid(self) -> None:
        with self.assertRaisesRegex(ValueError, "expected .env://path:VAR"):
            parse_key_ref(".env://nopath")
        with self.assertRaisesRegex(ValueError, "invalid KEY_REF scheme"):
            parse_key_ref("s3://bucket/key")


class WriteKeyRefTest(unittest.TestCase):
    def test_json_key_ref_requires_overwrite(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / "token.json"
            stored = write_key_ref_value(f"json://{path}", {"access_token": "a"})
            self.assertEqual(stored, f"json://{path}")
            self.assertEqual(
                json.loads(path.read_text(encoding="utf-8")), {"access_token": "a"}
            )

            with self.assertRaisesRegex(ValueError, "json key file exists"):
                write_key_ref_value(f"json://{path}", {"access_token": "b"})
            write_key_ref_value(f"json://{path}", {"access_token": "b"}, overwrite=True)
            self.assertEqual(
                json.loads(path.read_text(encoding="utf-8")), {"access_token": "b"}
            )

    def test_dotenv_key_ref_stores_compact_json(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            env_path = Path(temp_dir) / ".env"
            ref = f".env://{env_path}:LINEAR_TOKEN"
            write_key_ref_value(ref, {"access_token": "a"})

            self.assertEqual(
                json.loads(read_env_file(str(env_path))["LINEAR_TOKEN"]),
                {"access_token": "a"},
            )
            with self.assertRaisesRegex(ValueError, ".env key exists"):
                write_key_ref_value(ref, {"access_token": "b"})

    def test_env_key_ref_is_read_only(self) -> None:
        with self.assertRaisesRegex(ValueError, "read-only"):
            write_key_ref_value("env://TOKEN", {"access_token": "a"})


class EnvFileTest(unittest.TestCase):
    def test_read_env_file_parses_export_comments_and_quotes(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            env_path = Path(temp_dir) / ".env"
            env_path.write_text(
                "# comment\nexport TOKEN='abc'\nRAW=hello\n", encoding="utf-8"
            )
            self.assertEqual(
                read_env_file(str(env_path)), {"TOKEN": "abc", "RAW": "hello"}
            )

    def test_write_env_var_replaces_existing_key(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            env_path = Path(temp_dir) / ".env"
            env_path.write_text("A='1'\nB='2'\n", encoding="utf-8")

            write_env_var(str(env_path), "A", "new")

            self.assertEqual(
                env_path.read_text(encoding="utf-8"), "A='new'\nB='2'\n"
            )

    def test_missing_env_file_is_empty(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            self.assertEqual(read_env_file(str(Path(temp_dir) / ".env")), {})


if __name__ == "__main__":
    unittest.main()
