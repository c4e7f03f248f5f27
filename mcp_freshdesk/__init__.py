"""Freshdesk MCP Server - read-only access to Freshdesk tickets for MCP clients."""

__version__ = "0.1.0"
