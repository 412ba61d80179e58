"""
Root Typer application for the instruction-spine CLI.

Every catalog command accepts ``--dir`` (instructions directory) and
``--json`` (machine-readable output); everything else comes from the
``INSTRUCTIONS_*`` environment via :class:`CatalogSettings`.
"""

from __future__ import annotations

from pathlib import Path

import typer
from typer import Typer

from instruction_spine.cli.utils import console, load_settings, make_context, output_result, run_op
from instruction_spine.core.logging import configure_logging
from instruction_spine.ops import instructions as ops

app = Typer(
    name="instruction-spine",
    help="instruction-spine: governed catalog of versioned instructions.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

DirOption = typer.Option(None, "--dir", "-d", help="Instructions directory (overrides INSTRUCTIONS_DIR).")
JsonOption = typer.Option(False, "--json", help="Print raw JSON.")


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from instruction_spine import __version__

        typer.echo(f"instruction-spine {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log engine events at DEBUG."),
) -> None:
    """instruction-spine CLI: inspect, groom and serve the instruction catalog."""
    # stdout stays reserved for command output (and --json)
    configure_logging(level="DEBUG" if verbose else "WARNING", json_format=False)


# ── Commands ─────────────────────────────────────────────────────────────


@app.command("serve")
def serve(
    transport: str = typer.Option("stdio", "--transport", "-t", help="stdio or http"),
    port: int = typer.Option(8110, "--port", "-p", help="HTTP port"),
    directory: Path | None = DirOption,
) -> None:
    """Run the MCP server."""
    from instruction_spine.mcp.server import run

    settings = load_settings(directory)
    if transport != "stdio":
        console.print(f"[bold green]Starting instruction-spine MCP[/bold green] on port {port}")
    run(["--transport", transport, "--port", str(port)], settings=settings)


@app.command("list")
def list_cmd(
    category: str | None = typer.Option(None, "--category", "-c", help="Only this category."),
    directory: Path | None = DirOption,
    json_out: bool = JsonOption,
) -> None:
    """List instructions."""
    ctx = make_context(directory)
    result = run_op(ctx, ops.list_instructions, category)
    output_result(
        result,
        as_json=json_out,
        title="Instructions",
        items_key="items",
        columns=("id", "title", "priorityTier", "owner", "version", "status"),
    )


@app.command("export")
def export_cmd(
    meta_only: bool = typer.Option(False, "--meta-only", help="Drop bodies."),
    output: Path | None = typer.Option(None, "--output", "-o", help="Write JSON to this file."),
    directory: Path | None = DirOption,
    json_out: bool = JsonOption,
) -> None:
    """Export the catalog."""
    import json

    ctx = make_context(directory)
    result = run_op(ctx, ops.export_instructions, {"metaOnly": meta_only})
    if output is not None and result.success:
        output.write_text(json.dumps(result.data, indent=2) + "\n", encoding="utf-8")
        console.print(f"Exported {result.data['count']} instructions to {output}")  # type: ignore[index]
        return
    output_result(result, as_json=json_out, title="Export", items_key="items", columns=("id", "version", "sourceHash"))


@app.command("hash")
def hash_cmd(
    directory: Path | None = DirOption,
    json_out: bool = JsonOption,
) -> None:
    """Print the governance hash."""
    ctx = make_context(directory)
    result = run_op(ctx, ops.governance_hash)
    if result.success and not json_out:
        typer.echo(result.data["governanceHash"])  # type: ignore[index]
        return
    output_result(result, as_json=json_out)


@app.command("health")
def health_cmd(
    snapshot_dir: Path | None = typer.Option(None, "--snapshot-dir", help="Snapshot directory."),
    directory: Path | None = DirOption,
    json_out: bool = JsonOption,
) -> None:
    """Catalog integrity self-check."""
    overrides = {"snapshot_dir": snapshot_dir} if snapshot_dir is not None else {}
    ctx = make_context(directory, **overrides)
    result = run_op(ctx, ops.integrity_report)
    output_result(result, as_json=json_out, title="Integrity")
    if result.success and result.data and result.data["recursionRisk"] != "none":
        raise typer.Exit(code=3)


@app.command("groom")
def groom_cmd(
    dry_run: bool = typer.Option(False, "--dry-run", help="Preview without writing."),
    remove_deprecated: bool = typer.Option(False, "--remove-deprecated"),
    merge_duplicates: bool = typer.Option(False, "--merge-duplicates"),
    directory: Path | None = DirOption,
    json_out: bool = JsonOption,
) -> None:
    """Groom the catalog (hash repair, categories, review dates)."""
    ctx = make_context(directory, dry_run=dry_run)
    mode = {"dryRun": dry_run, "removeDeprecated": remove_deprecated, "mergeDuplicates": merge_duplicates}
    result = run_op(ctx, ops.groom_catalog, mode)
    output_result(result, as_json=json_out, title="Groom")


@app.command("snapshot")
def snapshot_cmd(
    snapshot_dir: Path | None = typer.Option(None, "--snapshot-dir", help="Snapshot directory."),
    directory: Path | None = DirOption,
    json_out: bool = JsonOption,
) -> None:
    """Write a canonical and a dated snapshot."""
    overrides = {"snapshot_dir": snapshot_dir} if snapshot_dir is not None else {}
    ctx = make_context(directory, **overrides)
    result = run_op(ctx, ops.write_snapshot)
    output_result(result, as_json=json_out, title="Snapshot")
