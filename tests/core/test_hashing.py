"""Tests for instruction_spine.core.hashing."""

from __future__ import annotations

import hashlib

from instruction_spine.core.hashing import (
    canonicalize_body,
    catalog_hash,
    hash_body,
    lines_hash,
    sha256_hex,
    stable_json,
)


class TestSha256:
    def test_matches_hashlib(self):
        assert sha256_hex("hello") == hashlib.sha256(b"hello").hexdigest()


class TestCanonicalBody:
    def test_line_endings_and_trailing_ws(self):
        assert canonicalize_body("a  \r\nb\t\rc") == "a\nb\nc"

    def test_trims_blank_edges(self):
        assert canonicalize_body("\n\nbody\n\n") == "body"

    def test_collapse_blank_lines(self):
        text = "a\n\n\n\nb"
        assert canonicalize_body(text) == text
        assert canonicalize_body(text, collapse_blank_lines=True) == "a\n\nb"

    def test_hash_body_ignores_whitespace_drift(self):
        assert hash_body("rule one  \r\n") == hash_body("rule one")


class TestDigests:
    def test_stable_json_sorted_compact(self):
        assert stable_json({"b": 1, "a": [1, 2]}) == '{"a":[1,2],"b":1}'

    def test_catalog_hash_order_independent(self):
        a = catalog_hash([("x", "h1"), ("y", "h2")])
        b = catalog_hash([("y", "h2"), ("x", "h1")])
        assert a == b == sha256_hex("x:h1|y:h2")

    def test_catalog_hash_changes_with_source_hash(self):
        assert catalog_hash([("x", "h1")]) != catalog_hash([("x", "h2")])

    def test_lines_hash(self):
        items = [{"id": "a"}, {"id": "b"}]
        assert lines_hash(items) == sha256_hex('{"id":"a"}\n{"id":"b"}')
