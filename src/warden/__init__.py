"""Warden — a tool permission broker for agent sessions."""

__version__ = "0.1.0"
