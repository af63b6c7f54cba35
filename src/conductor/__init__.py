"""Conductor - agent routing, handoffs, workflows and tool-call scheduling."""

__version__ = "0.1.0"
