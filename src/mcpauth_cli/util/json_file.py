from __future__ import annotations

import json
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

import json5

from .atomic_files import locked_file, write_text_atomic


def read_json_object(
    path: str | Path,
    *,
    not_found_message: str,
    invalid_json_prefix: str,
    expected_object_message: str,
    read_error_prefix: str | None = None,
) -> dict[str, Any]:
    file_path = Path(path)
    try:
        raw = file_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise ValueError(not_found_message) from None
    except OSError as exc:
        if read_error_prefix is not None:
            raise ValueError(f"{read_error_prefix}: {exc}") from None
        raise

    try:
        parsed = json5.loads(raw)
    except ValueError as exc:
        raise ValueError(f"{invalid_json_prefix}: {exc}") from None

    if not isinstance(parsed, dict):
        raise ValueError(expected_object_message)
    return parsed


def read_json_object_or_empty(path: str | Path, *, label: str) -> dict[str, Any]:
    if not Path(path).exists():
        return {}
    return read_json_object(
        path,
        not_found_message=f"{label} not found: {path}",
        invalid_json_prefix=f"invalid {label} JSON",
        expected_object_message=f"invalid {label}: expected object",
    )


def dump_json_object(payload: dict[str, Any]) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False, sort_keys=True) + "\n"


@contextmanager
def updating_json_object(
    path: str | Path, *, label: str, private: bool = False
) -> Iterator[dict[str, Any]]:
    """Read-modify-write a JSON object file under an exclusive lock.

    The yielded dict is written back only when the block exits without error.
    """

    with locked_file(f"{path}.lock"):
        doc = read_json_object_or_empty(path, label=label)
        yield doc
        write_text_atomic(path, dump_json_object(doc), private=private)
