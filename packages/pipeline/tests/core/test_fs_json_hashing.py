from __future__ import annotations

import json as stdlib_json
from pathlib import Path

from books_api_pipeline.core import fs, hashing, json


def test_atomic_write_replaces_whole_file(tmp_path: Path) -> None:
    text_path = tmp_path / "d1" / "sample.txt"
    fs.atomic_write_text(text_path, "hello\n")
    assert text_path.read_text() == "hello\n"

    fs.atomic_write_text(text_path, "updated")
    assert text_path.read_text() == "updated"

    bytes_path = tmp_path / "d2" / "sample.bin"
    fs.atomic_write_bytes(bytes_path, b"\x00\x01")
    assert bytes_path.read_bytes() == b"\x00\x01"

    # no temp files left next to the targets
    assert sorted(p.name for p in tmp_path.rglob("*") if p.is_file()) == [
        "sample.bin",
        "sample.txt",
    ]


def test_sha256_bytes() -> None:
    assert (
        hashing.sha256_bytes(b"abc")
        == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
    )


def test_json_helpers(tmp_path: Path) -> None:
    obj = {"b": 1, "a": 2}
    out = tmp_path / "sample.json"
    json.atomic_write_json(out, obj)
    assert stdlib_json.loads(out.read_text()) == {"a": 2, "b": 1}

    assert json.stable_json_dumps(obj, indent=None) == '{"a":2,"b":1}'
