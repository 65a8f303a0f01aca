"""Tool implementations, registry and routing."""
