"""Pytest configuration and fixtures."""

import json
import tempfile
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import pytest

from matrix_llmagent.errors import BackendExecutionFailed, MediaFetchFailed, PermissionDenied
from matrix_llmagent.rooms import HistoryEvent, HistoryPage, MessageKind

BOT = "@bot:example.org"


class FakeRoom:
    """In-memory room; ``pages`` are lists of events, newest first."""

    def __init__(self, pages: list[list[HistoryEvent]] | None = None, member_count: int = 2):
        self.room_id = "!room:example.org"
        self.own_user_id = BOT
        self.pages = pages or [[]]
        self.member_count = member_count
        self.requested_tokens: list[str | None] = []
        self.media: dict[str, Path] = {}
        self.fail_pages: set[int] = set()
        self.deny_name = False
        self.deny_topic = False
        self.notices: list[str] = []
        self.replies: list[tuple[str, HistoryEvent]] = []
        self.name: str | None = None
        self.topic: str | None = None
        self.left = False

    async def get_messages(self, from_token: str | None = None) -> HistoryPage:
        self.requested_tokens.append(from_token)
        index = int(from_token) if from_token else 0
        if index in self.fail_pages:
            raise RuntimeError(f"page {index} unavailable")
        end = str(index + 1) if index + 1 < len(self.pages) else None
        return HistoryPage(self.pages[index], end)

    async def fetch_media(self, event: HistoryEvent) -> Path:
        if event.event_id not in self.media:
            raise MediaFetchFailed(f"no media for {event.event_id}")
        return self.media[event.event_id]

    async def send_notice(self, text: str) -> None:
        self.notices.append(text)

    async def send_reply(self, text: str, event: HistoryEvent) -> None:
        self.replies.append((text, event))

    async def set_name(self, name: str) -> None:
        if self.deny_name:
            raise PermissionDenied("M_FORBIDDEN")
        self.name = name

    async def set_topic(self, topic: str) -> None:
        if self.deny_topic:
            raise PermissionDenied("M_FORBIDDEN")
        self.topic = topic

    async def leave(self) -> None:
        self.left = True

    async def active_member_count(self) -> int:
        return self.member_count


class FakeBackend:
    """Records prompts and answers from a queue of canned responses."""

    def __init__(self, models: Sequence[str] = ("gpt-4", "claude"), responses=None):
        self.models = list(models)
        self.responses = list(responses or ["Mock response"])
        self.calls: list[tuple[str | None, str, list[Path]]] = []
        self.list_calls = 0
        self.error: str | None = None

    async def execute(self, model, prompt, media=()):
        self.calls.append((model, prompt, list(media)))
        if self.error:
            raise BackendExecutionFailed(self.error)
        if len(self.responses) > 1:
            return self.responses.pop(0)
        return self.responses[0]

    async def list_models(self) -> list[str]:
        self.list_calls += 1
        return list(self.models)

    async def default_model(self) -> str:
        return "gpt-4"


def _make_event(
    sender: str, body: str, kind: MessageKind = MessageKind.TEXT, **kwargs: Any
) -> HistoryEvent:
    kwargs.setdefault("msgtype", kind.value)
    return HistoryEvent(sender=sender, kind=kind, body=body, **kwargs)


@pytest.fixture
def make_event():
    """Factory for history events."""
    return _make_event


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def room_factory():
    """Factory for in-memory rooms."""
    return FakeRoom


@pytest.fixture
def test_config(tmp_path) -> dict[str, Any]:
    """Test configuration fixture."""
    return {
        "homeserver_url": "https://matrix.example.org",
        "username": BOT,
        "password": "secret",
        "allow_list": r"@(alice|bob):example\.org",
        "message_limit": 5,
        "room_size_limit": 10,
        "state_dir": str(tmp_path / "state"),
        "chat_summary_model": "summary-model",
        "role": "terse",
    }


@pytest.fixture
def temp_config_file(test_config):
    """Temporary config file fixture."""
    with tempfile.NamedTemporaryFile(mode="w", suffix=".json", delete=False) as tmp:
        json.dump(test_config, tmp)
        tmp.flush()  # Ensure data is written to disk
        yield tmp.name
    Path(tmp.name).unlink(missing_ok=True)


@pytest.fixture
def agent(temp_config_file, fake_backend):
    """Agent wired to the fake backend."""
    from matrix_llmagent.history import TranscriptReconstructor
    from matrix_llmagent.main import MatrixLLMAgent

    agent = MatrixLLMAgent(temp_config_file)
    agent.backend = fake_backend
    agent.history = TranscriptReconstructor(fake_backend.list_models)
    return agent
