"""Workspaces, sessions and path sandboxing."""
