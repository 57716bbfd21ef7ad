"""Conversation context reconstruction from room history."""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path

from .directives import command_args, command_name, is_command
from .errors import HistoryUnavailable, MediaFetchFailed
from .rooms import HistoryEvent, MessageKind, Room

logger = logging.getLogger(__name__)

# Informational message kinds rendered as a single descriptive line
_DESCRIPTIONS = {
    MessageKind.AUDIO: "USER sent an audio file: {body}\n",
    MessageKind.VIDEO: "USER sent a video file: {body}\n",
    MessageKind.EMOTE: "USER sent an emote: {body}\n",
    MessageKind.LOCATION: "USER sent their location: {body}\n",
    MessageKind.SERVER_NOTICE: "SERVER: {body}\n",
    MessageKind.IMAGE: "USER sent an image: {body}\n",
    MessageKind.FILE: "USER sent a file: {body}\n",
}


@dataclass
class ChatContext:
    """Conversation state derived from one pass over the room history."""

    transcript: str = ""
    model: str | None = None
    lurk: bool | None = None
    # Oldest first
    media: list[Path] = field(default_factory=list)


class TranscriptReconstructor:
    """Builds the dialogue transcript by paging backward through a room's history.

    The same pass resolves the state set by directives: the most recent valid
    ``.model`` wins, ``.lurk``/``.nolurk`` decide whether the bot stays silent,
    and ``.clear`` marks the point beyond which history is ignored.
    """

    def __init__(self, list_models: Callable[[], Awaitable[list[str]]]):
        self.list_models = list_models

    async def get_context(self, room: Room) -> ChatContext:
        """Get the context of the current conversation in a room."""
        lines: list[str] = []
        context = ChatContext()
        models: list[str] | None = None
        token: str | None = None
        first_page = True

        while True:
            try:
                page = await room.get_messages(token)
            except Exception as e:
                if first_page:
                    raise HistoryUnavailable(f"Could not read history of {room.room_id}: {e}") from e
                logger.warning(f"Stopped reading history of {room.room_id} early: {e}")
                break
            first_page = False

            for event in page.events:
                if event.kind == MessageKind.TEXT and is_command(event.body):
                    body = event.body.lstrip()
                    name = command_name(body)
                    if name == "model" and context.model is None:
                        candidate = command_args(body).split(maxsplit=1)
                        if candidate:
                            if models is None:
                                models = await self.list_models()
                            if candidate[0] in models:
                                context.model = candidate[0]
                    elif name == "nolurk":
                        context.lurk = False
                    elif name == "lurk" and context.lurk is None:
                        context.lurk = True
                    elif name == "clear":
                        logger.debug(f"Found .clear in {room.room_id}, ignoring older history")
                        return self._finish(lines, context)
                    continue

                line = await self._render(room, event, context)
                if line:
                    lines.append(line)

            if page.end is None:
                break
            token = page.end

        return self._finish(lines, context)

    async def _render(self, room: Room, event: HistoryEvent, context: ChatContext) -> str | None:
        if event.kind == MessageKind.TEXT:
            if context.lurk:
                return None
            if event.sender == room.own_user_id:
                return f"ASSISTANT: {event.body}\n"
            return f"USER: {event.body}\n"

        if event.kind == MessageKind.NOTICE:
            # Our own notices are command feedback, not conversation
            if event.sender == room.own_user_id:
                return None
            return f"USER sent a notice: {event.body}\n"

        if event.kind == MessageKind.VERIFICATION_REQUEST:
            return None

        if event.kind.has_media:
            try:
                context.media.insert(0, await room.fetch_media(event))
            except MediaFetchFailed as e:
                logger.warning(f"Dropping attachment from {event.sender}: {e}")

        template = _DESCRIPTIONS.get(event.kind)
        if template is None:
            return f"USER sent a message of type {event.msgtype}: {event.body}\n"
        return template.format(body=event.body)

    @staticmethod
    def _finish(lines: list[str], context: ChatContext) -> ChatContext:
        context.transcript = "".join(reversed(lines))
        return context
