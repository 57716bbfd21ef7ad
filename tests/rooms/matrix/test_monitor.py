"""Tests for Matrix monitor functionality."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from mautrix.errors import MUnknownToken
from mautrix.types import (
    EventID,
    EventType,
    Membership,
    MessageEvent,
    MessageType,
    RoomID,
    TextMessageEventContent,
    UserID,
)

from matrix_llmagent.rooms.matrix import MatrixRoom

BOT = "@bot:example.org"
ROOM_ID = "!room:example.org"


def message_event(body: str, sender: str = "@alice:example.org", msgtype=MessageType.TEXT):
    return MessageEvent(
        type=EventType.ROOM_MESSAGE,
        room_id=RoomID(ROOM_ID),
        event_id=EventID("$event"),
        sender=UserID(sender),
        timestamp=0,
        content=TextMessageEventContent(msgtype=msgtype, body=body),
    )


@pytest.fixture
def monitor(agent):
    monitor = agent.matrix_monitor
    monitor.client = MagicMock()
    monitor.client.mxid = UserID(BOT)
    monitor.client.send_receipt = AsyncMock()
    monitor.client.join_room_by_id = AsyncMock()
    monitor.joined_rooms = {ROOM_ID}
    agent.router.handle_text = AsyncMock(return_value="responded")
    return monitor


class TestAllowList:
    """Test sender filtering."""

    def test_is_allowed(self, monitor):
        """Test that the allow list must match the whole user id."""
        assert monitor.is_allowed("@alice:example.org")
        assert monitor.is_allowed("@bob:example.org")
        assert not monitor.is_allowed("@mallory:example.org")
        assert not monitor.is_allowed("@alice:example.org.evil")

    def test_no_allow_list(self, monitor):
        monitor._allow_re = None

        assert monitor.is_allowed("@anyone:anywhere")


class TestMessageEvents:
    """Test routing of room messages."""

    @pytest.mark.asyncio
    async def test_routes_text(self, monitor, agent):
        """Test that conversation is routed and marked read."""
        await monitor.process_message_event(message_event("hello"))

        agent.router.handle_text.assert_awaited_once()
        room, event = agent.router.handle_text.call_args.args
        assert isinstance(room, MatrixRoom)
        assert room.room_id == ROOM_ID
        assert event.body == "hello"
        monitor.client.send_receipt.assert_awaited_once_with(RoomID(ROOM_ID), EventID("$event"))

    @pytest.mark.asyncio
    async def test_commands_not_marked_read(self, monitor, agent):
        await monitor.process_message_event(message_event(".print"))

        agent.router.handle_text.assert_awaited_once()
        monitor.client.send_receipt.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_ignores_disallowed_sender(self, monitor, agent):
        await monitor.process_message_event(message_event("hello", sender="@mallory:example.org"))

        agent.router.handle_text.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_ignores_rooms_not_joined(self, monitor, agent):
        monitor.joined_rooms = set()

        await monitor.process_message_event(message_event("hello"))

        agent.router.handle_text.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_ignores_non_text(self, monitor, agent):
        """Test that notices do not trigger the router."""
        await monitor.process_message_event(message_event("fyi", msgtype=MessageType.NOTICE))

        agent.router.handle_text.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_on_message_spawns_task(self, monitor):
        """Test that events are handled in a background task."""
        with patch.object(monitor, "process_message_event", new=AsyncMock()) as mock_process:
            evt = message_event("hello")
            await monitor._on_message(evt)
            await asyncio.sleep(0)

        mock_process.assert_awaited_once_with(evt)


class TestMembership:
    """Test invites and joined room tracking."""

    @pytest.mark.asyncio
    async def test_accepts_allowed_invite(self, monitor):
        evt = MagicMock(sender="@alice:example.org", room_id="!new:example.org")

        await monitor.process_invite_event(evt)

        monitor.client.join_room_by_id.assert_awaited_once_with(RoomID("!new:example.org"))
        assert "!new:example.org" in monitor.joined_rooms

    @pytest.mark.asyncio
    async def test_rejects_disallowed_invite(self, monitor):
        evt = MagicMock(sender="@mallory:example.org", room_id="!new:example.org")

        await monitor.process_invite_event(evt)

        monitor.client.join_room_by_id.assert_not_awaited()
        assert "!new:example.org" not in monitor.joined_rooms

    @pytest.mark.asyncio
    async def test_own_leave(self, monitor):
        """Test that leaving or being kicked forgets the room."""
        evt = MagicMock(state_key=BOT, room_id=ROOM_ID)
        evt.content.membership = Membership.LEAVE

        await monitor.process_membership_event(evt)

        assert ROOM_ID not in monitor.joined_rooms

    @pytest.mark.asyncio
    async def test_other_members_ignored(self, monitor):
        evt = MagicMock(state_key="@alice:example.org", room_id=ROOM_ID)
        evt.content.membership = Membership.LEAVE

        await monitor.process_membership_event(evt)

        assert ROOM_ID in monitor.joined_rooms

    @pytest.mark.asyncio
    async def test_own_join(self, monitor):
        evt = MagicMock(state_key=BOT, room_id="!other:example.org")
        evt.content.membership = Membership.JOIN

        await monitor.process_membership_event(evt)

        assert "!other:example.org" in monitor.joined_rooms


class TestSession:
    """Test login and session persistence."""

    def test_session_roundtrip(self, monitor):
        monitor.save_session(BOT, "DEVICE", "token")

        assert monitor.load_session() == {
            "user_id": BOT,
            "device_id": "DEVICE",
            "access_token": "token",
        }
        assert monitor.session_file.stat().st_mode & 0o777 == 0o600

    def test_corrupt_session(self, monitor):
        monitor.state_path.mkdir(parents=True, exist_ok=True)
        monitor.session_file.write_text("{oops")

        assert monitor.load_session() is None

    @pytest.mark.asyncio
    async def test_login_with_password(self, monitor):
        """Test that a fresh login saves the session."""
        with patch("matrix_llmagent.rooms.matrix.monitor.Client") as mock_client_class:
            client = mock_client_class.return_value
            client.login = AsyncMock(
                return_value=MagicMock(user_id=BOT, device_id="DEVICE", access_token="token")
            )

            result = await monitor.login()

        assert result is client
        assert client.login.call_args.kwargs["identifier"] == BOT
        assert client.login.call_args.kwargs["password"] == "secret"
        assert json.loads(monitor.session_file.read_text())["access_token"] == "token"

    @pytest.mark.asyncio
    async def test_login_reuses_session(self, monitor):
        """Test that a saved session is used without logging in."""
        monitor.save_session(BOT, "DEVICE", "saved-token")
        with patch("matrix_llmagent.rooms.matrix.monitor.Client") as mock_client_class:
            client = mock_client_class.return_value
            client.whoami = AsyncMock()
            client.login = AsyncMock()

            result = await monitor.login()

        assert result is client
        assert mock_client_class.call_args.kwargs["token"] == "saved-token"
        client.login.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_login_rejected_session(self, monitor):
        """Test that a rejected token leads to a password login."""
        monitor.save_session(BOT, "DEVICE", "stale-token")
        with patch("matrix_llmagent.rooms.matrix.monitor.Client") as mock_client_class:
            client = mock_client_class.return_value
            client.whoami = AsyncMock(side_effect=MUnknownToken(401, "Unknown token"))
            client.api.session.close = AsyncMock()
            client.login = AsyncMock(
                return_value=MagicMock(user_id=BOT, device_id="DEVICE2", access_token="fresh")
            )

            await monitor.login()

        client.login.assert_awaited_once()
        assert monitor.load_session()["access_token"] == "fresh"
