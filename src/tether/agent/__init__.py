"""Agent CLI integration: argument strategy, stream protocol, sessions, shadow tasks."""
