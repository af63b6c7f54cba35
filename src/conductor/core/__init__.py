"""Orchestration core: domain model and collaborator protocols."""
