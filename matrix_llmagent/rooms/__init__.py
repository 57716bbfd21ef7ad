"""Room abstractions shared by the command router and the transports."""

from .base import HistoryEvent, HistoryPage, MessageKind, Room

__all__ = ["HistoryEvent", "HistoryPage", "MessageKind", "Room"]
