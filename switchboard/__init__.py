"""Conversation routing between a WhatsApp bot and human operators."""

__version__ = "0.1.0"
