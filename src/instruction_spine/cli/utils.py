"""
CLI utility helpers -- context construction and output formatting.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from instruction_spine.core.errors import ConfigError
from instruction_spine.core.settings import CatalogSettings, get_settings
from instruction_spine.ops.context import OperationContext, build_services
from instruction_spine.ops.result import OperationResult

console = Console()
err_console = Console(stderr=True)


# ── Context helper ───────────────────────────────────────────────────────


def load_settings(directory: Path | None = None, **overrides: Any) -> CatalogSettings:
    """Process settings with CLI flag overrides applied."""
    if directory is not None:
        overrides["dir"] = directory
    try:
        return get_settings(**overrides)
    except ConfigError as exc:
        err_console.print(f"[bold red]Error[/bold red] ({exc.code}): {exc.message}")
        raise typer.Exit(code=2) from exc


def make_context(
    directory: Path | None = None,
    *,
    dry_run: bool = False,
    **overrides: Any,
) -> OperationContext:
    """Build services and return a CLI ``OperationContext`` (catalog not yet loaded)."""
    services = build_services(load_settings(directory, **overrides))
    return OperationContext(services=services, caller="cli", dry_run=dry_run)


def run_op(
    ctx: OperationContext,
    op: Callable[..., Awaitable[OperationResult[dict[str, Any]]]],
    *args: Any,
    **kwargs: Any,
) -> OperationResult[dict[str, Any]]:
    """Load the catalog and run one async ops function in a single event loop."""

    async def main() -> OperationResult[dict[str, Any]]:
        if not ctx.store.loaded:
            await ctx.store.load()
        return await op(ctx, *args, **kwargs)

    return asyncio.run(main())


# ── Output helpers ───────────────────────────────────────────────────────


def output_result(
    result: OperationResult[dict[str, Any]],
    *,
    as_json: bool = False,
    title: str = "",
    items_key: str | None = None,
    columns: tuple[str, ...] = (),
) -> None:
    """Render an ``OperationResult`` to the terminal."""
    if not result.success:
        err = result.error
        msg = err.message if err else "Unknown error"
        code = err.code if err else "ERROR"
        err_console.print(f"[bold red]Error[/bold red] ({code}): {msg}")
        if err and err.details.get("reasons"):
            for reason in err.details["reasons"]:
                err_console.print(f"  - {reason}")
        raise typer.Exit(code=1)

    data = result.data or {}

    if as_json:
        typer.echo(json.dumps(data, indent=2, default=str))
        return

    if items_key is not None:
        items = data.get(items_key) or []
        if not items:
            console.print("[dim]No items.[/dim]")
        else:
            _print_table(items, title=title, columns=columns)
        rest = {k: v for k, v in data.items() if k != items_key}
        _print_dict(rest)
    else:
        _print_dict(data, title=title)


# ── Private helpers ──────────────────────────────────────────────────────


def _print_table(items: list[dict[str, Any]], *, title: str = "", columns: tuple[str, ...] = ()) -> None:
    """Render a list of dicts as a Rich table."""
    cols = list(columns) or list(items[0])
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in cols:
        table.add_column(col, overflow="fold")
    for item in items:
        table.add_row(*(_cell(item.get(c)) for c in cols))
    console.print(table)


def _print_dict(data: dict[str, Any], *, title: str = "") -> None:
    """Render a single dict as key-value pairs."""
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        console.print(f"  [cyan]{k}[/cyan]: {_cell(v)}")


def _cell(value: Any) -> str:
    if isinstance(value, list | dict):
        return json.dumps(value, default=str)
    return "" if value is None else str(value)
