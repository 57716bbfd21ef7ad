"""Matrix room monitor: login, sync loop and routing of room events."""

from __future__ import annotations

import asyncio
import getpass
import json
import logging
import re
from pathlib import Path
from typing import TYPE_CHECKING, Any

from mautrix.client import Client, InternalEventType
from mautrix.client.dispatcher import MembershipEventDispatcher
from mautrix.client.state_store.memory import MemoryStateStore
from mautrix.errors import MatrixRequestError, MUnknownToken
from mautrix.types import EventType, Membership, RoomID, UserID

from ...directives import is_command
from ..base import MessageKind
from .room import MatrixRoom, to_history_event

if TYPE_CHECKING:
    from ...main import MatrixLLMAgent

logger = logging.getLogger(__name__)

DEVICE_NAME = "matrix-llmagent"


class MatrixRoomMonitor:
    """Matrix-specific room monitor that owns the mautrix client."""

    def __init__(self, agent: MatrixLLMAgent):
        """Initialize Matrix room monitor.

        Args:
            agent: Reference to the main MatrixLLMAgent instance for accessing shared resources
        """
        self.agent = agent
        self.client: Client | None = None
        self.joined_rooms: set[str] = set()
        allow_list = self.agent.config.allow_list
        self._allow_re = re.compile(allow_list) if allow_list else None

    @property
    def state_path(self) -> Path:
        return self.agent.config.state_path

    @property
    def session_file(self) -> Path:
        return self.state_path / "session.json"

    @property
    def media_dir(self) -> Path:
        return self.state_path / "media"

    def is_allowed(self, sender: str) -> bool:
        """Check the sender against the configured allow list."""
        if self._allow_re is None:
            return True
        return self._allow_re.fullmatch(sender) is not None

    def room(self, room_id: str) -> MatrixRoom:
        assert self.client is not None
        return MatrixRoom(self.client, room_id, self.media_dir)

    def load_session(self) -> dict[str, Any] | None:
        """Load the saved login, if any."""
        try:
            with open(self.session_file) as f:
                session = json.load(f)
        except FileNotFoundError:
            return None
        except json.JSONDecodeError as e:
            logger.warning(f"Ignoring corrupt session file {self.session_file}: {e}")
            return None
        if not all(session.get(k) for k in ("user_id", "device_id", "access_token")):
            return None
        return session

    def save_session(self, user_id: str, device_id: str, access_token: str) -> None:
        self.state_path.mkdir(parents=True, exist_ok=True)
        self.session_file.write_text(
            json.dumps(
                {"user_id": user_id, "device_id": device_id, "access_token": access_token},
                indent=2,
            )
        )
        self.session_file.chmod(0o600)
        logger.debug(f"Saved session to {self.session_file}")

    async def login(self) -> Client:
        """Create a client, reusing the saved session or logging in with the password."""
        config = self.agent.config
        session = self.load_session()
        if session:
            client = Client(
                mxid=UserID(session["user_id"]),
                device_id=session["device_id"],
                base_url=config.homeserver_url,
                token=session["access_token"],
                state_store=MemoryStateStore(),
            )
            try:
                await client.whoami()
                logger.info(f"Restored session for {session['user_id']}")
                return client
            except MUnknownToken:
                logger.warning("Saved access token was rejected, logging in again")
                await client.api.session.close()

        password = config.password or getpass.getpass(f"Password for {config.username}: ")
        client = Client(base_url=config.homeserver_url, state_store=MemoryStateStore())
        resp = await client.login(
            identifier=config.username, password=password, device_name=DEVICE_NAME
        )
        self.save_session(str(resp.user_id), str(resp.device_id), resp.access_token)
        logger.info(f"Logged in as {resp.user_id} (device {resp.device_id})")
        return client

    async def _connect_with_retry(self, max_retries: int = 5) -> Client | None:
        """Log in with exponential backoff retry."""
        for attempt in range(max_retries):
            try:
                return await self.login()
            except Exception as e:
                wait_time = 2**attempt
                logger.warning(f"Login attempt {attempt + 1} failed: {e}")
                if attempt < max_retries - 1:
                    logger.info(f"Retrying in {wait_time} seconds...")
                    await asyncio.sleep(wait_time)
                else:
                    logger.error(f"Failed to log in after {max_retries} attempts")
        return None

    async def process_message_event(self, evt) -> None:
        """Process incoming room message events."""
        room_id = str(evt.room_id)
        if room_id not in self.joined_rooms:
            logger.debug(f"Ignoring event in {room_id}, not joined")
            return
        event = to_history_event(evt)
        if event is None or event.kind != MessageKind.TEXT:
            return
        if not self.is_allowed(event.sender):
            logger.debug(f"Ignoring message from {event.sender}, not in allow list")
            return

        room = self.room(room_id)
        logger.debug(f"Processing message in {room_id} from {event.sender}")
        if event.event_id and not is_command(event.body):
            await room.mark_read(event.event_id)
        result = await self.agent.router.handle_text(room, event)
        logger.info(f"{room_id}: {result}")

    async def _on_message(self, evt) -> None:
        task = asyncio.create_task(self.process_message_event(evt))
        task.add_done_callback(
            lambda t: t.exception()
            and logger.error(f"Event processing task failed: {t.exception()}")
        )

    async def process_membership_event(self, evt) -> None:
        """Track the rooms we are joined to."""
        assert self.client is not None
        if str(evt.state_key) != str(self.client.mxid):
            return
        room_id = str(evt.room_id)
        if evt.content.membership == Membership.JOIN:
            self.joined_rooms.add(room_id)
        else:
            self.joined_rooms.discard(room_id)
            logger.info(f"No longer in {room_id} ({evt.content.membership.value})")

    async def process_invite_event(self, evt) -> None:
        """Join rooms we are invited to by allowed users."""
        sender = str(evt.sender)
        room_id = str(evt.room_id)
        if not self.is_allowed(sender):
            logger.warning(f"Rejecting invite from non-allowed user {sender} to {room_id}")
            return

        logger.info(f"Accepting invite from {sender} to {room_id}")
        assert self.client is not None
        try:
            await self.client.join_room_by_id(RoomID(room_id))
        except MatrixRequestError as e:
            logger.error(f"Failed to join room {room_id}: {e}")
            return
        self.joined_rooms.add(room_id)

    async def _on_sync_error(self, data: dict[str, Any]) -> None:
        logger.warning(
            f"Matrix sync error, retrying in {data.get('sleep_for')}s: {data.get('error')}"
        )

    def _setup_handlers(self, client: Client) -> None:
        client.add_dispatcher(MembershipEventDispatcher)
        client.add_event_handler(EventType.ROOM_MESSAGE, self._on_message)
        client.add_event_handler(InternalEventType.INVITE, self.process_invite_event)
        for membership in (
            InternalEventType.JOIN,
            InternalEventType.LEAVE,
            InternalEventType.KICK,
            InternalEventType.BAN,
        ):
            client.add_event_handler(membership, self.process_membership_event)
        client.add_event_handler(InternalEventType.SYNC_ERRORED, self._on_sync_error)

    async def run(self) -> None:
        """Run the main Matrix monitor loop."""
        client = await self._connect_with_retry()
        if client is None:
            logger.error("Could not establish connection, exiting")
            return
        self.client = client
        self._setup_handlers(client)

        try:
            self.joined_rooms = {str(room_id) for room_id in await client.get_joined_rooms()}
            logger.info(f"Joined to {len(self.joined_rooms)} rooms")
            logger.info("The client is ready! Listening to new messages...")
            # Events that arrived while we were offline are not answered
            client.ignore_initial_sync = True
            await client.start(filter_data=None)
        except KeyboardInterrupt:
            logger.info("Received interrupt signal, shutting down...")
        finally:
            client.stop()
            await client.api.session.close()
            self.client = None
            logger.info("Matrix monitor stopped")
