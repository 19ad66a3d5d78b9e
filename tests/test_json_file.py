from __future__ import annotations

import tempfile
import unittest
from pathlib import Path
from unittest import mock

from mcpauth_cli.util.json_file import (
    read_json_object,
    read_json_object_or_empty,
    updating_json_object,
)


def _read(path: str | Path, **kwargs: str) -> dict:
    return read_json_object(
        path,
        not_found_message=f"server config not found: {path}",
        invalid_json_prefix="invalid server config JSON/JSON5",
        expected_object_message="invalid server config: expected object",
        **kwargs,
    )


class JsonFileTest(unittest.TestCase):
    def test_read_json_object_not_found(self) -> None:
        with self.assertRaisesRegex(ValueError, "server config not found: missing.json"):
            _read("missing.json")

    def test_read_json_object_accepts_json5(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / "mcp.json"
            path.write_text("// note\n{servers: [], trailing: 1,}", encoding="utf-8")
            self.assertEqual(_read(path), {"servers": [], "trailing": 1})

    def test_read_json_object_invalid_and_non_object(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            bad = Path(temp_dir) / "bad.json"
            bad.write_text("{", encoding="utf-8")
            with self.assertRaisesRegex(ValueError, "invalid server config JSON/JSON5: "):
                _read(bad)

            listing = Path(temp_dir) / "list.json"
            listing.write_text("[]", encoding="utf-8")
            with self.assertRaisesRegex(ValueError, "invalid server config: expected object"):
                _read(listing)

    def test_read_json_object_read_error_prefix(self) -> None:
        with mock.patch("pathlib.Path.read_text", side_effect=OSError("permission denied")):
            with self.assertRaisesRegex(
                ValueError, "unable to read server config: permission denied"
            ):
                _read("mcp.json", read_error_prefix="unable to read server config")

    def test_updating_json_object_writes_canonical_json(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / "state.json"
            with updating_json_object(path, label="state file") as doc:
                doc["b"] = 2
                doc["a"] = 1

            self.assertEqual(path.read_text(encoding="utf-8"), '{\n  "a": 1,\n  "b": 2\n}\n')
            self.assertEqual(read_json_object_or_empty(path, label="state file"), {"a": 1, "b": 2})

    def test_updating_json_object_skips_write_on_error(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / "state.json"
            path.write_text('{"a": 1}', encoding="utf-8")
            with self.assertRaisesRegex(RuntimeError, "abort"):
                with updating_json_object(path, label="state file") as doc:
                    doc["a"] = 2
                    raise RuntimeError("abort")
            self.assertEqual(path.read_text(encoding="utf-8"), '{"a": 1}')


if __name__ == "__main__":
    unittest.main()
