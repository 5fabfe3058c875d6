"""Realtime presence and conversation sync engine for the chat client."""

__version__ = "1.0.0"
