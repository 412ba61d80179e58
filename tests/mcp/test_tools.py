"""Tests for the MCP tool layer (tool functions called directly)."""

from __future__ import annotations

import asyncio
import json
import time

import pytest
import pytest_asyncio

from instruction_spine.mcp import _app
from instruction_spine.mcp.server import (
    add_instruction,
    create_server,
    dispatch_action,
    export_instructions,
    governance_hash,
    groom_catalog,
    health_check,
    integrity_health,
    lifespan,
    mcp,
    remove_instructions,
    update_instruction,
)


@pytest_asyncio.fixture
async def app_state(settings_factory, clock, monkeypatch, tmp_path):
    """Fresh process state per test, rooted in tmp_path."""
    monkeypatch.setattr(_app, "_state", _app.AppContext())
    settings = settings_factory(usage_file=str(tmp_path / "usage.json"))
    return _app.configure(settings, clock=clock)


class TestRegistration:
    @pytest.mark.asyncio
    async def test_tools_registered(self):
        names = {tool.name for tool in await mcp.list_tools()}
        assert {
            "health/check",
            "instructions/add",
            "instructions/update",
            "instructions/remove",
            "instructions/groom",
            "instructions/dispatch",
            "instructions/governanceHash",
            "instructions/health",
            "instructions/export",
        } <= names

    def test_create_server(self):
        assert create_server() is mcp


class TestHealthCheck:
    @pytest.mark.asyncio
    async def test_before_load(self, app_state):
        result = await health_check()
        assert result["status"] == "ok"
        assert result["catalogLoaded"] is False
        assert result["mutationEnabled"] is True

    @pytest.mark.asyncio
    async def test_after_load(self, app_state, make_entry):
        await add_instruction(make_entry("a"))
        result = await health_check()
        assert result["catalogLoaded"] is True
        assert result["count"] == 1

    @pytest.mark.asyncio
    async def test_responsive_during_slow_mutation(self, app_state, monkeypatch, make_entry):
        services = await _app.ensure_ready()
        storage = services.store.storage
        real_write = storage.write

        async def slow_write(key, payload):
            await asyncio.sleep(0.3)
            await real_write(key, payload)

        monkeypatch.setattr(storage, "write", slow_write)
        mutation = asyncio.create_task(add_instruction(make_entry("slow")))
        groom = asyncio.create_task(groom_catalog({}))
        await asyncio.sleep(0.01)

        async def timed():
            start = time.perf_counter()
            result = await health_check()
            return result, time.perf_counter() - start

        results = await asyncio.gather(*(timed() for _ in range(30)))
        assert not mutation.done()
        for result, elapsed in results:
            assert result["status"] == "ok"
            assert elapsed < 1.5

        assert (await mutation)["created"] is True
        assert "error" not in await groom


class TestInstructionTools:
    @pytest.mark.asyncio
    async def test_add_update_remove(self, app_state, make_entry):
        added = await add_instruction(make_entry("a", "one"))
        assert added["created"] is True and added["verified"] is True

        updated = await update_instruction({"id": "a", "body": "two"})
        assert updated == {"id": "a", "updated": True, "version": "1.0.1", "changed": True}

        removed = await remove_instructions(["a"])
        assert removed["removedIds"] == ["a"]

    @pytest.mark.asyncio
    async def test_errors_are_payloads(self, app_state):
        result = await update_instruction({"id": "ghost", "body": "x"})
        assert result["error"]["code"] == "NOT_FOUND"
        result = await remove_instructions(["ghost"])
        assert result["errorCount"] == 1
        assert (await remove_instructions(["ghost"], missingOk=True))["errorCount"] == 0

    @pytest.mark.asyncio
    async def test_mutation_disabled(self, settings_factory, clock, monkeypatch, make_entry):
        monkeypatch.setattr(_app, "_state", _app.AppContext())
        _app.configure(settings_factory(enable_mutation=False), clock=clock)
        result = await add_instruction(make_entry("a"))
        assert result["error"]["code"] == "MUTATION_DISABLED"
        assert (await dispatch_action("list"))["count"] == 0

    @pytest.mark.asyncio
    async def test_dispatch(self, app_state, make_entry):
        await add_instruction(make_entry("a", categories=["security"]))
        caps = await dispatch_action("capabilities")
        assert "query" in caps["supportedActions"]
        query = await dispatch_action("query", {"categoriesAny": ["security"]})
        assert query["total"] == 1
        assert (await dispatch_action("bogus"))["error"]["code"] == "UNKNOWN_ACTION"

    @pytest.mark.asyncio
    async def test_governance_hash_and_integrity(self, app_state, make_entry):
        empty = await governance_hash()
        await add_instruction(make_entry("a"))
        filled = await governance_hash()
        assert filled["governanceHash"] != empty["governanceHash"]
        assert filled["items"][0]["id"] == "a"

        report = await integrity_health()
        assert report["recursionRisk"] == "none"
        assert report["snapshot"] == "missing"

    @pytest.mark.asyncio
    async def test_export_and_groom(self, app_state, make_entry):
        await add_instruction(make_entry("a"))
        await add_instruction(make_entry("b"))
        exported = await export_instructions(ids=["b"], metaOnly=True)
        assert exported["count"] == 1
        assert "body" not in exported["items"][0]
        groomed = await groom_catalog({"dryRun": True})
        assert groomed["dryRun"] is True
        assert groomed["scanned"] == 2


async def _call(name: str, arguments: dict) -> dict:
    """Invoke a tool through the server's argument validation and decode its payload."""
    result = await mcp.call_tool(name, arguments)
    content = result[0] if isinstance(result, tuple) else result
    return json.loads(content[0].text)


class TestCallTool:
    @pytest.mark.asyncio
    async def test_dispatch_flat_arguments(self, app_state, make_entry):
        await add_instruction(make_entry("a", "alpha body"))
        got = await _call("instructions/dispatch", {"action": "get", "id": "a"})
        assert got["item"]["body"] == "alpha body"

    @pytest.mark.asyncio
    async def test_dispatch_flat_add_and_remove(self, app_state, make_entry):
        added = await _call("instructions/dispatch", {"action": "add", "entry": make_entry("b"), "overwrite": True})
        assert added["id"] == "b"
        listed = await _call("instructions/dispatch", {"action": "list"})
        assert [item["id"] for item in listed["items"]] == ["b"]
        removed = await _call("instructions/dispatch", {"action": "remove", "id": "b"})
        assert removed["removedIds"] == ["b"]

    @pytest.mark.asyncio
    async def test_dispatch_nested_params_still_accepted(self, app_state, make_entry):
        await add_instruction(make_entry("a", categories=["security"]))
        query = await _call("instructions/dispatch", {"action": "query", "params": {"categoriesAny": ["security"]}})
        assert query["total"] == 1
        flat = await _call("instructions/dispatch", {"action": "query", "categoriesAny": ["ops"]})
        assert flat["total"] == 0


class TestLifespan:
    @pytest.mark.asyncio
    async def test_loads_and_flushes_usage(self, app_state, tmp_path):
        async with lifespan(mcp) as state:
            assert state.initialized
            await health_check()
            await dispatch_action("list")
        assert (tmp_path / "usage.json").exists()
