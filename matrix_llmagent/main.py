"""Main application entry point for matrix-llmagent."""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

from .aichat import AiChat
from .commands import CommandRouter
from .config import Config
from .defaults import DEFAULT_ROLES
from .errors import ConfigurationMissing, MediaFetchFailed
from .history import TranscriptReconstructor
from .rate_limiter import RateLimiter
from .roles import prepend_role
from .rooms import HistoryEvent, HistoryPage, MessageKind
from .rooms.matrix import MatrixRoomMonitor

# Set up logging
root_logger = logging.getLogger()
root_logger.setLevel(logging.DEBUG)

formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

# Console handler for INFO and above
console_handler = logging.StreamHandler(sys.stdout)
console_handler.setLevel(logging.INFO)
console_handler.setFormatter(formatter)

# File handler for DEBUG and above
file_handler = logging.FileHandler("debug.log")
file_handler.setLevel(logging.DEBUG)
file_handler.setFormatter(formatter)

root_logger.addHandler(console_handler)
root_logger.addHandler(file_handler)

# Suppress noisy third-party library messages
logging.getLogger("mau").setLevel(logging.INFO)
logging.getLogger("mautrix").setLevel(logging.INFO)
logging.getLogger("aiohttp").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


class MatrixLLMAgent:
    """Main Matrix LLM agent application."""

    def __init__(self, config_path: str = "config.json"):
        self.raw_config = self.load_config(config_path)
        try:
            self.config = Config.from_dict(self.raw_config)
        except ConfigurationMissing as e:
            logger.error(f"Invalid configuration in {config_path}: {e}")
            sys.exit(1)

        self.backend = AiChat(config_dir=self.config.aichat_config_dir)
        self.rate_limiter = RateLimiter(self.config.message_limit, self.config.room_size_limit)
        self.history = TranscriptReconstructor(self.backend.list_models)
        self.router = CommandRouter(self)
        self.matrix_monitor = MatrixRoomMonitor(self)

    def add_role(self, context: str) -> str:
        """Prepend the configured role prompt to a transcript."""
        return prepend_role(context, self.config.role, self.config.roles, DEFAULT_ROLES)

    def load_config(self, config_path: str) -> dict[str, Any]:
        """Load configuration from JSON file."""
        try:
            with open(config_path) as f:
                config = json.load(f)
                logger.debug(f"Loaded configuration from {config_path}")
                return config
        except FileNotFoundError:
            logger.error(
                f"Config file {config_path} not found. "
                "Copy config.json.example to config.json and configure."
            )
            sys.exit(1)
        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON in config file: {e}")
            sys.exit(1)

    async def run(self) -> None:
        """Run the main agent loop by delegating to the Matrix monitor."""
        await self.matrix_monitor.run()


class CLIRoom:
    """In-memory room holding a single message, printing what the bot sends."""

    room_id = "!cli:localhost"
    own_user_id = "@bot:localhost"

    def __init__(self, events: list[HistoryEvent]):
        self.events = events

    async def get_messages(self, from_token: str | None = None) -> HistoryPage:
        return HistoryPage(list(reversed(self.events)))

    async def fetch_media(self, event: HistoryEvent) -> Path:
        raise MediaFetchFailed("No media in CLI mode")

    async def send_notice(self, text: str) -> None:
        print(f"📤 Bot notice: {text}")

    async def send_reply(self, text: str, event: HistoryEvent) -> None:
        print(f"📤 Bot response: {text}")

    async def set_name(self, name: str) -> None:
        print(f"📤 Room name: {name}")

    async def set_topic(self, topic: str) -> None:
        print(f"📤 Room topic: {topic}")

    async def leave(self) -> None:
        print("📤 Left the room")

    async def active_member_count(self) -> int:
        return 2


async def cli_message(
    message: str, config_path: str | None = None, sender: str = "@testuser:localhost"
) -> None:
    """CLI mode for testing message handling including command parsing."""
    # Load configuration
    config_file = Path(config_path) if config_path else Path(__file__).parent.parent / "config.json"

    if not config_file.exists():
        print(f"Error: Config file not found at {config_file}")
        print("Please create config.json from config.json.example")
        sys.exit(1)

    print(f"🤖 Simulating Matrix message from {sender}: {message}")
    print("=" * 60)

    try:
        agent = MatrixLLMAgent(str(config_file))
        event = HistoryEvent(
            sender=sender,
            kind=MessageKind.TEXT,
            body=message,
            msgtype=MessageKind.TEXT.value,
            event_id="$cli",
        )
        result = await agent.router.handle_text(CLIRoom([event]), event)
        print(f"Result: {result}")

    except Exception as e:
        print(f"❌ Error handling message: {e}")
        import traceback

        traceback.print_exc()
        sys.exit(1)


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="matrix-llmagent - Matrix chatbot backed by aichat")
    parser.add_argument(
        "--message", type=str, help="Run in CLI mode to simulate handling a Matrix message"
    )
    parser.add_argument(
        "--sender",
        type=str,
        default="@testuser:localhost",
        help="Sender of the simulated message (with --message)",
    )
    parser.add_argument(
        "--config", type=str, help="Path to config file (default: config.json in project root)"
    )

    args = parser.parse_args()

    if args.message:
        asyncio.run(cli_message(args.message, args.config, args.sender))
    else:
        agent = MatrixLLMAgent(args.config or "config.json")
        asyncio.run(agent.run())


if __name__ == "__main__":
    main()
