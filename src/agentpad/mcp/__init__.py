"""MCP server for agentpad."""
