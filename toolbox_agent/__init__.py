"""Toolbox agent: MCP tool-server container orchestration for a shared host."""

__version__ = "1.0.0"
