"""Message protocol, permission gate, Claude CLI manager, NATS bridge and SQLite models for agent teams."""

__version__ = "0.1.0"

__all__ = [
    "bridge",
    "context_monitor",
    "manager",
    "models",
    "natsclient",
    "permissions",
    "protocol",
    "stream",
]