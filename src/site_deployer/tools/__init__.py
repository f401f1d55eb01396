"""MCP tools."""

from .deploy_tools import register_tools

__all__ = ["register_tools"]
