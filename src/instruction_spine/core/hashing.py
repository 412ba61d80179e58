"""
Deterministic hashing for instruction content and catalog state.

Three digests are used across the engine:

- ``sha256_hex(body)`` is the record ``sourceHash``; it must equal the hash
  of the exact stored body.
- ``hash_body(body)`` hashes the *canonical* body (line endings and
  trailing whitespace normalized) so the integrity audit can tell a
  whitespace-only drift from a real content change.
- ``stable_json`` gives a key-sorted compact serialization that every
  catalog-wide digest is built on.

Manifesto:
    Drift detection is only as good as its hash inputs.  Every digest here
    is computed over an explicit, ordered, canonical representation so the
    same catalog produces the same hash on every platform.

Examples:
    >>> sha256_hex("hello") == sha256_hex("hello")
    True
    >>> canonicalize_body("a  \\r\\nb\\t\\n\\n")
    'a\\nb'
    >>> hash_body("a\\r\\nb") == hash_body("a\\nb")
    True

Tags:
    hashing, sha256, canonicalization, drift-detection, instruction-spine
"""

from __future__ import annotations

import hashlib
import json
import re
from collections.abc import Iterable
from typing import Any

_TRAILING_WS = re.compile(r"[ \t]+$", re.MULTILINE)
_BLANK_RUNS = re.compile(r"\n{3,}")


def sha256_hex(content: str) -> str:
    """SHA-256 hex digest of a UTF-8 string."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def canonicalize_body(body: str, *, collapse_blank_lines: bool = False) -> str:
    """Normalize a body for whitespace-insensitive comparison.

    - CRLF / CR become LF
    - trailing spaces and tabs are stripped per line
    - leading and trailing blank lines are removed
    - runs of blank lines collapse to one when ``collapse_blank_lines``
    """
    text = body.replace("\r\n", "\n").replace("\r", "\n")
    text = _TRAILING_WS.sub("", text)
    text = text.strip("\n")
    if collapse_blank_lines:
        text = _BLANK_RUNS.sub("\n\n", text)
    return text


def hash_body(body: str, *, collapse_blank_lines: bool = False) -> str:
    """SHA-256 of the canonical body."""
    return sha256_hex(canonicalize_body(body, collapse_blank_lines=collapse_blank_lines))


def stable_json(value: Any) -> str:
    """Compact JSON with sorted keys; the input to every catalog digest."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def catalog_hash(pairs: Iterable[tuple[str, str]]) -> str:
    """Digest over ``id:sourceHash`` pairs, id-sorted and ``"|"``-joined."""
    ordered = sorted(f"{rid}:{source_hash}" for rid, source_hash in pairs)
    return sha256_hex("|".join(ordered))


def lines_hash(items: Iterable[dict[str, Any]]) -> str:
    """Digest over pre-sorted dicts, one stable JSON line each."""
    return sha256_hex("\n".join(stable_json(item) for item in items))
