"""MCP tools package -- re-exports all tool registrations."""

# Importing each module triggers @mcp.tool() registration
from instruction_spine.mcp.tools import health, instructions  # noqa: F401
