"""``instruction-spine`` command-line interface (typer + rich)."""
