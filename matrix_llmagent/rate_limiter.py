"""Per-account message limits and room size gating."""

import asyncio
import logging

from .rooms import Room

logger = logging.getLogger(__name__)


class RateLimiter:
    """Counts messages per sender for the lifetime of the process.

    Counters are global across all rooms and never reset. Rooms with more
    active members than ``room_size_limit`` are ignored silently so that the
    bot does not spam large rooms with limit notices.
    """

    def __init__(self, message_limit: int | None = None, room_size_limit: int | None = None):
        self.message_limit = message_limit
        self.room_size_limit = room_size_limit
        self._counts: dict[str, int] = {}
        self._lock = asyncio.Lock()

    def count(self, sender: str) -> int:
        """Get the number of accepted messages for a sender."""
        return self._counts.get(sender, 0)

    async def should_throttle(self, room: Room, sender: str) -> bool:
        """Check the limits for a sender, counting the message if it passes.

        Returns:
            True if the message must not be answered
        """
        try:
            room_size = await room.active_member_count()
        except Exception as e:
            logger.warning(f"Could not get member count for {room.room_id}: {e}")
            room_size = 0

        async with self._lock:
            if self.room_size_limit is not None and room_size > self.room_size_limit:
                logger.debug(
                    f"Ignoring {sender} in {room.room_id}: {room_size} members "
                    f"exceeds limit of {self.room_size_limit}"
                )
                return True

            count = self._counts.get(sender, 0)
            if self.message_limit is None or count < self.message_limit:
                self._counts[sender] = count + 1
                return False

        logger.error(f"User {sender} has sent {count} messages")
        await room.send_notice(
            f".error: you have used up your message limit of {self.message_limit} messages."
        )
        return True
