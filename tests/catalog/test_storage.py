"""Tests for instruction_spine.catalog.storage: atomic writes and scanning."""

from __future__ import annotations

import errno
import json
import os

import pytest

from instruction_spine.catalog import storage as storage_mod
from instruction_spine.catalog.storage import DirectoryStorage, atomic_write_text
from instruction_spine.core.errors import IOFailureError


class TestAtomicWrite:
    def test_writes_and_replaces(self, tmp_path):
        target = tmp_path / "nested" / "a.json"
        atomic_write_text(target, "one")
        atomic_write_text(target, "two")
        assert target.read_text() == "two"
        assert [p.name for p in target.parent.iterdir()] == ["a.json"]

    def test_transient_error_retried(self, tmp_path, monkeypatch):
        calls = {"n": 0}
        real_replace = os.replace

        def flaky_replace(src, dst):
            calls["n"] += 1
            if calls["n"] < 3:
                raise PermissionError(errno.EBUSY, "busy")
            real_replace(src, dst)

        monkeypatch.setattr(storage_mod.os, "replace", flaky_replace)
        target = tmp_path / "a.json"
        atomic_write_text(target, "ok", base_delay=0)
        assert target.read_text() == "ok"
        assert calls["n"] == 3
        assert [p.name for p in tmp_path.iterdir()] == ["a.json"]

    def test_permanent_error_raises_and_cleans_temp(self, tmp_path, monkeypatch):
        def broken_replace(src, dst):
            raise OSError(errno.ENOSPC, "disk full")

        monkeypatch.setattr(storage_mod.os, "replace", broken_replace)
        target = tmp_path / "a.json"
        with pytest.raises(IOFailureError):
            atomic_write_text(target, "data", base_delay=0)
        assert list(tmp_path.iterdir()) == []


class TestDirectoryStorage:
    @pytest.mark.asyncio
    async def test_scan_missing_dir_creates_it(self, tmp_path):
        storage = DirectoryStorage(tmp_path / "instructions")
        found, scanned = await storage.scan()
        assert (found, scanned) == ([], 0)
        assert (tmp_path / "instructions").is_dir()

    @pytest.mark.asyncio
    async def test_scan_filters_and_reports_errors(self, tmp_path):
        storage = DirectoryStorage(tmp_path)
        await storage.write("good", {"id": "good"})
        (tmp_path / "gates.json").write_text("{}")
        (tmp_path / "_manifest.json").write_text("{}")
        (tmp_path / "000-bootstrapper.json").write_text("{}")
        (tmp_path / "notes.txt").write_text("x")
        (tmp_path / "broken.json").write_text("{oops")
        (tmp_path / "array.json").write_text("[1, 2]")

        found, scanned = await storage.scan()
        by_key = {f.key: f for f in found}
        assert scanned == 7
        assert sorted(by_key) == ["array", "broken", "good"]
        assert by_key["good"].data == {"id": "good"}
        assert by_key["broken"].error is not None
        assert by_key["array"].error == "top-level JSON value is not an object"

    @pytest.mark.asyncio
    async def test_write_is_pretty_json(self, tmp_path):
        storage = DirectoryStorage(tmp_path)
        await storage.write("a", {"id": "a", "title": "é"})
        text = storage.path_for("a").read_text(encoding="utf-8")
        assert text.endswith("\n")
        assert json.loads(text) == {"id": "a", "title": "é"}

    @pytest.mark.asyncio
    async def test_delete(self, tmp_path):
        storage = DirectoryStorage(tmp_path)
        await storage.write("a", {"id": "a"})
        assert await storage.delete("a") is True
        assert await storage.delete("a") is False

    @pytest.mark.asyncio
    async def test_keys(self, tmp_path):
        storage = DirectoryStorage(tmp_path)
        await storage.write("b", {})
        await storage.write("a", {})
        (tmp_path / "readme.md").write_text("x")
        assert await storage.keys() == ["a.json", "b.json"]
        assert storage.location == str(tmp_path)
