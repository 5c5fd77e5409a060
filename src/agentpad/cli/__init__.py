"""Command line interface for agentpad."""
