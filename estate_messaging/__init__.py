"""Conversation and messaging core for the estate marketplace."""

__version__ = "1.0.0"
