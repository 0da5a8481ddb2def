"""Agent runtime: per-session serialization in front of the agent capability."""
