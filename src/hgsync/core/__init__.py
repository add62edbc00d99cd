"""Core synchronization engine: command execution, revision model, locks, network."""
