"""Core components for TinyChat: storage, chains, memories, ranking, model services."""
