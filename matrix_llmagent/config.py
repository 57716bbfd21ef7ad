"""Immutable configuration snapshot built from the JSON config file."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .errors import ConfigurationMissing


@dataclass(frozen=True)
class RoleExample:
    user: str
    assistant: str


@dataclass(frozen=True)
class RoleDetails:
    """A persona: prompt template plus optional worked example exchanges."""

    name: str
    prompt: str
    examples: tuple[RoleExample, ...] = ()
    description: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RoleDetails:
        try:
            name = data["name"]
            prompt = data["prompt"]
        except KeyError as e:
            raise ConfigurationMissing(f"Role definition is missing '{e.args[0]}'") from None
        try:
            examples = tuple(
                RoleExample(user=ex["user"], assistant=ex["assistant"])
                for ex in data.get("examples") or []
            )
        except KeyError as e:
            raise ConfigurationMissing(
                f"Example of role '{name}' is missing '{e.args[0]}'"
            ) from None
        return cls(name, prompt, examples, data.get("description"))


def default_state_dir() -> Path:
    """$XDG_STATE_HOME/matrix-llmagent, falling back to ~/.local/state."""
    base = os.environ.get("XDG_STATE_HOME") or Path.home() / ".local" / "state"
    return Path(base) / "matrix-llmagent"


@dataclass(frozen=True)
class Config:
    """Process-wide configuration, read-only once loaded."""

    homeserver_url: str
    username: str
    password: str | None = None
    # Regex of accounts the bot responds to; None allows everyone
    allow_list: str | None = None
    # Per-account message limit for the lifetime of the process
    message_limit: int | None = None
    # Rooms with more active members than this are ignored
    room_size_limit: int | None = None
    state_dir: str | None = None
    aichat_config_dir: str | None = None
    chat_summary_model: str | None = None
    role: str | None = None
    roles: tuple[RoleDetails, ...] | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Config:
        missing = [key for key in ("homeserver_url", "username") if not data.get(key)]
        if missing:
            raise ConfigurationMissing(f"Missing required config keys: {', '.join(missing)}")

        roles = data.get("roles")
        return cls(
            homeserver_url=data["homeserver_url"],
            username=data["username"],
            password=data.get("password"),
            allow_list=data.get("allow_list"),
            message_limit=data.get("message_limit"),
            room_size_limit=data.get("room_size_limit"),
            state_dir=data.get("state_dir"),
            aichat_config_dir=data.get("aichat_config_dir"),
            chat_summary_model=data.get("chat_summary_model"),
            role=data.get("role"),
            roles=tuple(RoleDetails.from_dict(r) for r in roles) if roles is not None else None,
        )

    @property
    def state_path(self) -> Path:
        if self.state_dir:
            return Path(self.state_dir).expanduser()
        return default_state_dir()
