"""Domain model: routing, handoffs, workflows, todos and tool-call scheduling."""
