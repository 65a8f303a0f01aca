"""Long-term memory storage and embeddings."""
