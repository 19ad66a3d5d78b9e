from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from dotenv import dotenv_values, set_key

from .atomic_files import write_text_atomic
from .json_file import dump_json_object


@dataclass(frozen=True, slots=True)
class KeyRef:
    kind: str
    path: str | None
    name: str | None
    raw: str


def parse_key_ref(raw: str) -> KeyRef:
    value = raw.strip()
    if not value:
        raise ValueError("invalid KEY_REF: empty value")

    if value.startswith("env://"):
        name = value[len("env://") :].strip()
        if not name:
            raise ValueError("invalid KEY_REF: missing env var name")
        return KeyRef(kind="env", path=None, name=name, raw=value)

    if value.startswith(".env://"):
        rest = value[len(".env://") :]
        if ":" not in rest:
            raise ValueError("invalid KEY_REF: expected .env://path:VAR")
        path, name = rest.rsplit(":", 1)
        if not path.strip() or not name.strip():
            raise ValueError("invalid KEY_REF: expected .env://path:VAR")
        return KeyRef(kind="dotenv", path=path.strip(), name=name.strip(), raw=value)

    if value.startswith("json://"):
        path = value[len("json://") :].strip()
        if not path:
            raise ValueError("invalid KEY_REF: missing json path")
        return KeyRef(kind="json", path=path, name=None, raw=value)

    if "://" not in value:
        # Bare path means json://path.
        return KeyRef(kind="json", path=value, name=None, raw=value)

    raise ValueError("invalid KEY_REF scheme (expected .env:// or json://)")


def write_key_ref_value(raw: str, payload: Any, *, overwrite: bool = False) -> str:
    """Write `payload` to a key reference and return its normalized form."""

    ref = parse_key_ref(raw)
    if ref.kind == "env":
        raise ValueError(
            "env:// KEY_REF is read-only; use .env:// or json:// for output"
        )

    if ref.kind == "json":
        assert ref.path is not None
        path = Path(ref.path)
        if path.exists() and not overwrite:
            raise ValueError(
                f"json key file exists: {ref.path} (use --overwrite to replace)"
            )
        write_text_atomic(ref.path, dump_json_object(payload), private=True)
        return f"json://{ref.path}"

    assert ref.path is not None and ref.name is not None
    if not overwrite and ref.name in read_env_file(ref.path):
        raise ValueError(
            f".env key exists: {ref.name} in {ref.path} (use --overwrite to replace)"
        )
    value = (
        payload if isinstance(payload, str) else json.dumps(payload, separators=(",", ":"))
    )
    write_env_var(ref.path, ref.name, value)
    return f".env://{ref.path}:{ref.name}"


def read_env_file(path: str) -> dict[str, str]:
    file_path = Path(path)
    if not file_path.exists():
        return {}

    parsed = dotenv_values(dotenv_path=file_path, encoding="utf-8")
    return {
        key: value
        for key, value in parsed.items()
        if isinstance(key, str) and value is not None
    }


def write_env_var(path: str, name: str, value: str) -> None:
    Path(path).touch(exist_ok=True)
    set_key(
        dotenv_path=path,
        key_to_set=name,
        value_to_set=value,
        quote_mode="always",
        export=False,
        encoding="utf-8",
    )
