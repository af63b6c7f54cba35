"""Audit event sinks."""
