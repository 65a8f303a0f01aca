"""assistant-core: context engine, workspace-aware tool router and agentic loop."""

__version__ = "0.1.0"
