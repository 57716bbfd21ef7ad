"""
Matrix-specific functionality built on mautrix.
"""

from .monitor import MatrixRoomMonitor
from .room import MatrixRoom, to_history_event

__all__ = ["MatrixRoom", "MatrixRoomMonitor", "to_history_event"]
