"""Conversation context sessions and document selection."""

from contextkit.session.coordinator import ContextSessionCoordinator

__all__ = ["ContextSessionCoordinator"]
