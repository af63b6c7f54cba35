"""Infrastructure adapters for the orchestration core."""
