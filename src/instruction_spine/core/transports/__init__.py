"""Transport scaffolds (MCP)."""
