#!/usr/bin/env python3
"""repomap MCP Server - Exposes the repo map as an MCP tool.

One tool, ``repo_map``, runs the status, init and update operations and
returns their result objects as JSON. The persisted map of the workspace
is also readable as a resource.

Usage:
    repomap-mcp --workspace /my/project
    python -m repomap.mcp
"""

import argparse
import asyncio
import json
import logging
import os
from typing import Any, Dict, List, Optional, Sequence

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import Resource, TextContent, Tool

from .. import __version__, cache
from ..repo_map import NO_MAP_MESSAGE, init, status, update

logger = logging.getLogger(__name__)

MAP_RESOURCE_URI = "repomap://repo-map"

TOOLS: List[Dict[str, Any]] = [
    {
        "name": "repo_map",
        "description": """Build, refresh or inspect the structural map of a repository (symbols, exports and imports per file).

USE THIS TOOL WHEN:
- You start work on a repository and want its structure (action: init)
- Files changed since the map was built (action: update)
- You need to know whether the map is still current (action: status)

RETURNS: JSON. For status: whether a map exists, its summary and staleness.""",
        "inputSchema": {
            "type": "object",
            "properties": {
                "action": {
                    "type": "string",
                    "enum": ["status", "init", "update"],
                    "description": "Operation to run",
                },
                "path": {
                    "type": "string",
                    "description": "Repository root (default: workspace root)",
                },
                "force": {
                    "type": "boolean",
                    "description": "init: rebuild even if a map exists",
                    "default": False,
                },
                "full": {
                    "type": "boolean",
                    "description": "update: rebuild from scratch",
                    "default": False,
                },
            },
            "required": ["action"],
        },
    },
]


class RepoMapToolHandler:
    """Runs repo_map tool calls against a workspace."""

    def __init__(self, workspace_root: Optional[str] = None):
        self.workspace_root = workspace_root or os.getcwd()

    async def handle_repo_map(self, arguments: Dict[str, Any]) -> Dict[str, Any]:
        action = arguments.get("action", "status")
        path = arguments.get("path") or self.workspace_root

        if action == "status":
            result = status(path)
            if not result.exists:
                return {"exists": False, "message": result.message or NO_MAP_MESSAGE}
            return result.to_dict()
        if action == "init":
            result = await init(path, force=bool(arguments.get("force", False)))
            return result.to_dict()
        if action == "update":
            result = await update(path, full=bool(arguments.get("full", False)))
            return result.to_dict()
        return {"success": False, "error": f"Unknown action: {action}"}

    def read_map(self) -> str:
        repo_map = cache.load(self.workspace_root)
        if repo_map is None:
            return json.dumps({"exists": False, "message": NO_MAP_MESSAGE})
        return json.dumps(repo_map.to_dict(), indent=2)


def create_server(workspace_root: Optional[str] = None) -> Server:
    """Create the MCP server with the repo_map tool registered."""
    server = Server("repomap", version=__version__)
    handler = RepoMapToolHandler(workspace_root)

    @server.list_tools()
    async def list_tools() -> list[Tool]:
        return [
            Tool(name=tool["name"], description=tool["description"], inputSchema=tool["inputSchema"])
            for tool in TOOLS
        ]

    @server.call_tool()
    async def call_tool(name: str, arguments: Dict[str, Any]) -> Sequence[TextContent]:
        if name != "repo_map":
            return [TextContent(type="text", text=json.dumps({"success": False, "error": f"Unknown tool: {name}"}))]
        try:
            result = await handler.handle_repo_map(arguments or {})
        except Exception as e:
            logger.exception("Error executing tool %s", name)
            result = {"success": False, "error": str(e)}
        return [TextContent(type="text", text=json.dumps(result, indent=2))]

    @server.list_resources()
    async def list_resources() -> list[Resource]:
        return [
            Resource(
                uri=MAP_RESOURCE_URI,
                name="Repo Map",
                description="The persisted structural map of the workspace",
                mimeType="application/json",
            ),
        ]

    @server.read_resource()
    async def read_resource(uri) -> str:
        if str(uri) == MAP_RESOURCE_URI:
            return handler.read_map()
        raise ValueError(f"Unknown resource: {uri}")

    return server


async def run_server(workspace_root: Optional[str] = None):
    """Run the MCP server over stdio."""
    server = create_server(workspace_root)
    async with stdio_server() as (read_stream, write_stream):
        await server.run(read_stream, write_stream, server.create_initialization_options())


def main():
    """Entry point for the ``repomap-mcp`` console script."""
    parser = argparse.ArgumentParser(description="repomap MCP server")
    parser.add_argument("--workspace", "-w", default=os.getcwd(), help="Workspace root directory")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.debug else logging.INFO)
    asyncio.run(run_server(args.workspace))


if __name__ == "__main__":
    main()
