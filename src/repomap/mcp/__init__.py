"""repomap MCP server.

Exposes the repo map to MCP-compatible assistants over stdio.

Usage:
    repomap-mcp

    # Or as a Python module
    python -m repomap.mcp
"""

from .server import create_server, main, run_server

__all__ = [
    "create_server",
    "run_server",
    "main",
]
