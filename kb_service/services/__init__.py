"""Engine client, caches and the knowledge base service."""
