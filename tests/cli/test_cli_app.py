"""Tests for the instruction-spine Typer CLI."""

from __future__ import annotations

import json

import pytest
import structlog
from typer.testing import CliRunner

from instruction_spine import __version__
from instruction_spine.catalog.snapshots import CANONICAL_NAME
from instruction_spine.cli.app import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def _reset_structlog():
    yield
    structlog.reset_defaults()


@pytest.fixture
def catalog_dir(tmp_path):
    directory = tmp_path / "instructions"
    directory.mkdir()
    for rid, priority in (("alpha", 50), ("beta", 10)):
        record = {"id": rid, "title": rid.title(), "body": f"Body of {rid}.", "priority": priority}
        (directory / f"{rid}.json").write_text(json.dumps(record))
    return directory


@pytest.fixture
def env(tmp_path):
    return {
        "INSTRUCTIONS_AUDIT_LOG": str(tmp_path / "logs" / "audit.jsonl"),
        "INSTRUCTIONS_SNAPSHOT_DIR": str(tmp_path / "snapshots"),
        "INSTRUCTIONS_OWNERS_FILE": str(tmp_path / "owners.json"),
    }


def _invoke(args, env, **extra_env):
    return runner.invoke(app, args, env={**env, **extra_env})


class TestRoot:
    def test_help(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for command in ("serve", "list", "export", "hash", "health", "groom", "snapshot"):
            assert command in result.output

    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert result.output.strip() == f"instruction-spine {__version__}"


class TestReadCommands:
    def test_list_json(self, catalog_dir, env):
        result = _invoke(["list", "--dir", str(catalog_dir), "--json"], env)
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["count"] == 2
        assert [i["id"] for i in data["items"]] == ["alpha", "beta"]
        assert data["items"][1]["priorityTier"] == "P4"

    def test_list_table(self, catalog_dir, env):
        result = _invoke(["list", "-d", str(catalog_dir)], env)
        assert result.exit_code == 0
        assert "alpha" in result.output

    def test_list_empty_dir(self, tmp_path, env):
        result = _invoke(["list", "--dir", str(tmp_path / "none"), "--json"], env)
        assert result.exit_code == 0
        assert json.loads(result.output)["count"] == 0

    def test_hash(self, catalog_dir, env):
        result = _invoke(["hash", "--dir", str(catalog_dir)], env)
        assert result.exit_code == 0
        digest = result.output.strip()
        assert len(digest) == 64
        again = _invoke(["hash", "--dir", str(catalog_dir), "--json"], env)
        assert json.loads(again.output)["governanceHash"] == digest

    def test_export_to_file(self, catalog_dir, env, tmp_path):
        target = tmp_path / "export.json"
        result = _invoke(["export", "--dir", str(catalog_dir), "--meta-only", "--output", str(target)], env)
        assert result.exit_code == 0
        exported = json.loads(target.read_text())
        assert exported["count"] == 2
        assert "body" not in exported["items"][0]

    def test_health(self, catalog_dir, env):
        result = _invoke(["health", "--dir", str(catalog_dir), "--json"], env)
        assert result.exit_code == 0
        report = json.loads(result.output)
        assert report["recursionRisk"] == "none"
        assert report["count"] == 2


class TestMaintenanceCommands:
    def test_snapshot(self, catalog_dir, env, tmp_path):
        snapshots = tmp_path / "snaps"
        result = _invoke(["snapshot", "--dir", str(catalog_dir), "--snapshot-dir", str(snapshots), "--json"], env)
        assert result.exit_code == 0
        assert json.loads(result.output)["count"] == 2
        assert (snapshots / CANONICAL_NAME).exists()

    def test_groom_dry_run_without_mutation(self, catalog_dir, env):
        result = _invoke(["groom", "--dir", str(catalog_dir), "--dry-run", "--json"], env)
        assert result.exit_code == 0
        report = json.loads(result.output)
        assert report["dryRun"] is True
        assert report["scanned"] == 2

    def test_groom_refused_without_mutation(self, catalog_dir, env):
        result = _invoke(["groom", "--dir", str(catalog_dir)], env)
        assert result.exit_code == 1

    def test_groom_with_mutation(self, catalog_dir, env):
        result = _invoke(
            ["groom", "--dir", str(catalog_dir), "--json"],
            env,
            INSTRUCTIONS_ENABLE_MUTATION="true",
        )
        assert result.exit_code == 0, result.output
        assert json.loads(result.output)["dryRun"] is False
