"""Application layer: settings, agent runner, orchestrator and factory."""
