"""LiteLLM model service."""
