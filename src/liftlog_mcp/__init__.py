"""LiftLog MCP server: exercise library, workouts and training history over MCP."""

from .config import MCPConfig
from .server import create_mcp_server, main

__all__ = ["MCPConfig", "create_mcp_server", "main"]
