"""miniagent — an agentic execution engine with parallel sub-agents."""

__version__ = "0.1.0"
