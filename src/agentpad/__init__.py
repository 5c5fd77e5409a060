"""agentpad - project task hierarchies, scratchpads and subagent runs."""

__version__ = "0.1.0"
