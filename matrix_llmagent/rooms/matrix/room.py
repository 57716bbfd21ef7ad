"""mautrix-backed implementation of the room capabilities."""

import asyncio
import hashlib
import logging
import mimetypes
from pathlib import Path

import aiohttp
from mautrix.client import Client
from mautrix.errors import DecryptionError, MatrixRequestError
from mautrix.types import (
    EventID,
    EventType,
    Membership,
    MessageEvent,
    MessageType,
    PaginationDirection,
    RoomID,
    RoomNameStateEventContent,
    RoomTopicStateEventContent,
    TextMessageEventContent,
)

from ...errors import MediaFetchFailed, PermissionDenied
from ..base import HistoryEvent, HistoryPage, MessageKind

logger = logging.getLogger(__name__)

PAGE_SIZE = 50


def to_history_event(evt) -> HistoryEvent | None:
    """Convert a mautrix room event, None for anything that is not a readable message."""
    if not isinstance(evt, MessageEvent) or evt.type != EventType.ROOM_MESSAGE:
        return None
    content = evt.content
    raw_msgtype = getattr(content, "msgtype", None)
    if raw_msgtype is None:
        return None
    msgtype = raw_msgtype.value if isinstance(raw_msgtype, MessageType) else str(raw_msgtype)

    media_url = None
    encrypted_file = getattr(content, "file", None)
    if encrypted_file is not None:
        media_url = str(encrypted_file.url)
    elif getattr(content, "url", None):
        media_url = str(content.url)
    info = getattr(content, "info", None)

    return HistoryEvent(
        sender=str(evt.sender),
        kind=MessageKind.from_msgtype(msgtype),
        body=getattr(content, "body", None) or "",
        msgtype=msgtype,
        event_id=str(evt.event_id),
        media_url=media_url,
        mimetype=getattr(info, "mimetype", None),
        raw=evt,
    )


def _decrypt(data: bytes, key: str, sha256: str, iv: str) -> bytes:
    try:
        # Needs the olm bindings from the e2ee extra
        from mautrix.crypto.attachments import decrypt_attachment
    except ImportError as e:
        raise MediaFetchFailed(
            "Encrypted attachments need matrix-llmagent[e2ee] installed"
        ) from e
    return decrypt_attachment(data, key, sha256, iv)


class MatrixRoom:
    """A joined Matrix room, wrapping the client calls the agent needs."""

    def __init__(self, client: Client, room_id: str, media_dir: Path):
        self.client = client
        self._room_id = RoomID(room_id)
        self.media_dir = media_dir

    @property
    def room_id(self) -> str:
        return str(self._room_id)

    @property
    def own_user_id(self) -> str:
        return str(self.client.mxid)

    async def get_messages(self, from_token: str | None = None) -> HistoryPage:
        resp = await self.client.get_messages(
            self._room_id,
            direction=PaginationDirection.BACKWARD,
            from_token=from_token,
            limit=PAGE_SIZE,
        )
        events = []
        for evt in resp.events:
            converted = to_history_event(evt)
            if converted is not None:
                events.append(converted)
            elif evt.type == EventType.ROOM_ENCRYPTED:
                logger.debug(f"Skipping undecryptable event {evt.event_id} in {self.room_id}")
        end = str(resp.end) if resp.end and resp.events else None
        return HistoryPage(events, end)

    async def fetch_media(self, event: HistoryEvent) -> Path:
        """Download an attachment into the media cache and return its path."""
        if not event.media_url:
            raise MediaFetchFailed(f"Event {event.event_id} has no media source")
        if not event.mimetype or "/" not in event.mimetype:
            raise MediaFetchFailed(f"Event {event.event_id} has invalid mimetype {event.mimetype!r}")

        digest = hashlib.sha256(event.media_url.encode("utf-8")).hexdigest()[:32]
        suffix = mimetypes.guess_extension(event.mimetype.split(";")[0].strip()) or ""
        path = self.media_dir / f"{digest}{suffix}"
        if path.exists():
            return path

        try:
            data = await self.client.download_media(event.media_url)
            encrypted_file = getattr(getattr(event.raw, "content", None), "file", None)
            if encrypted_file is not None:
                data = _decrypt(
                    data,
                    encrypted_file.key.key,
                    encrypted_file.hashes["sha256"],
                    encrypted_file.iv,
                )
            await asyncio.to_thread(self._store, path, data)
        except (
            MatrixRequestError,
            DecryptionError,
            aiohttp.ClientError,
            OSError,
            ValueError,
        ) as e:
            raise MediaFetchFailed(f"Could not download {event.media_url}: {e}") from e

        logger.debug(f"Downloaded {event.media_url} to {path}")
        return path

    def _store(self, path: Path, data: bytes) -> None:
        self.media_dir.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    async def send_notice(self, text: str) -> None:
        await self.client.send_notice(self._room_id, text)

    async def send_reply(self, text: str, event: HistoryEvent) -> None:
        content = TextMessageEventContent(msgtype=MessageType.TEXT, body=text)
        if isinstance(event.raw, MessageEvent):
            content.set_reply(event.raw)
        elif event.event_id:
            content.set_reply(EventID(event.event_id))
        await self.client.send_message(self._room_id, content)

    async def set_name(self, name: str) -> None:
        try:
            await self.client.send_state_event(
                self._room_id, EventType.ROOM_NAME, RoomNameStateEventContent(name=name)
            )
        except MatrixRequestError as e:
            raise PermissionDenied(f"Cannot rename {self.room_id}: {e}") from e

    async def set_topic(self, topic: str) -> None:
        try:
            await self.client.send_state_event(
                self._room_id, EventType.ROOM_TOPIC, RoomTopicStateEventContent(topic=topic)
            )
        except MatrixRequestError as e:
            raise PermissionDenied(f"Cannot set topic of {self.room_id}: {e}") from e

    async def leave(self) -> None:
        await self.client.leave_room(self._room_id)

    async def active_member_count(self) -> int:
        members = await self.client.get_members(self._room_id)
        return sum(
            1 for m in members if m.content.membership in (Membership.JOIN, Membership.INVITE)
        )

    async def mark_read(self, event_id: str) -> None:
        await self.client.send_receipt(self._room_id, EventID(event_id))
