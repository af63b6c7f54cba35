"""Agent and workflow definition stores."""
