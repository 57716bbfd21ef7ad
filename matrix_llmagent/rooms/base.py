"""Transport-neutral view of a chat room and its history."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Protocol


class MessageKind(Enum):
    TEXT = "m.text"
    NOTICE = "m.notice"
    IMAGE = "m.image"
    FILE = "m.file"
    AUDIO = "m.audio"
    VIDEO = "m.video"
    EMOTE = "m.emote"
    LOCATION = "m.location"
    SERVER_NOTICE = "m.server_notice"
    VERIFICATION_REQUEST = "m.key.verification.request"
    OTHER = "other"

    @classmethod
    def from_msgtype(cls, msgtype: str | None) -> MessageKind:
        for kind in cls:
            if kind.value == msgtype:
                return kind
        return cls.OTHER

    @property
    def has_media(self) -> bool:
        return self in (MessageKind.IMAGE, MessageKind.FILE)


@dataclass(frozen=True)
class HistoryEvent:
    """A single room message as seen by the transcript builder."""

    sender: str
    kind: MessageKind
    body: str
    msgtype: str = ""
    event_id: str | None = None
    media_url: str | None = None
    mimetype: str | None = None
    # Transport-specific payload needed to download or reply (e.g. the mautrix event)
    raw: Any = None


@dataclass(frozen=True)
class HistoryPage:
    events: list[HistoryEvent]
    # Token for the next older page, None at the beginning of the room
    end: str | None = None


class Room(Protocol):
    """Capabilities the agent needs from a joined room."""

    @property
    def room_id(self) -> str: ...

    @property
    def own_user_id(self) -> str: ...

    async def get_messages(self, from_token: str | None = None) -> HistoryPage:
        """Return one page of history, newest event first."""
        ...

    async def fetch_media(self, event: HistoryEvent) -> Path:
        """Download the attachment of a media event, raising MediaFetchFailed."""
        ...

    async def send_notice(self, text: str) -> None: ...

    async def send_reply(self, text: str, event: HistoryEvent) -> None: ...

    async def set_name(self, name: str) -> None:
        """Set the room name, raising PermissionDenied if not allowed."""
        ...

    async def set_topic(self, topic: str) -> None:
        """Set the room topic, raising PermissionDenied if not allowed."""
        ...

    async def leave(self) -> None: ...

    async def active_member_count(self) -> int: ...
