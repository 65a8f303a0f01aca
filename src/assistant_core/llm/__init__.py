"""Model provider interfaces and adapters."""
