"""Context assembly: recall, ranking and token-budgeted prompt composition."""
