"""mcpshelf: local MCP server catalogue with profiles and backups."""

__version__ = "0.1.0"

__all__ = ["__version__"]
