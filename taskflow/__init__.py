"""TaskFlow AI: chat-driven task management."""

__version__ = "0.1.0"
