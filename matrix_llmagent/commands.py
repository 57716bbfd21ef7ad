"""Directive registry and routing of inbound text messages."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .directives import command_args, command_name, is_command
from .errors import BackendExecutionFailed, HistoryUnavailable
from .history import ChatContext
from .rooms import HistoryEvent, Room
from .summary import rename

if TYPE_CHECKING:
    from .main import MatrixLLMAgent

logger = logging.getLogger(__name__)

Handler = Callable[["MatrixLLMAgent", Room, HistoryEvent], Awaitable[None]]


@dataclass(frozen=True)
class Command:
    name: str
    help: str | None
    handler: Handler


async def _read_context(agent: MatrixLLMAgent, room: Room) -> ChatContext | None:
    try:
        return await agent.history.get_context(room)
    except HistoryUnavailable as e:
        logger.error(f"Could not get context: {e}")
        await room.send_notice(".error: could not read the room history")
        return None


async def party(agent: MatrixLLMAgent, room: Room, event: HistoryEvent) -> None:
    await room.send_notice(".🎉🎊🥳 let's PARTY!! 🥳🎊🎉")


async def full_context(agent: MatrixLLMAgent, room: Room, event: HistoryEvent) -> None:
    """Print the context with the role and its examples included."""
    context = await _read_context(agent, room)
    if context is None:
        return
    await room.send_notice(".fullcontext:\n" + agent.add_role(context.transcript))


async def print_context(agent: MatrixLLMAgent, room: Room, event: HistoryEvent) -> None:
    context = await _read_context(agent, room)
    if context is None:
        return
    await room.send_notice(".context:\n" + context.transcript)


async def send(agent: MatrixLLMAgent, room: Room, event: HistoryEvent) -> None:
    """Send the message to the model without the conversation."""
    if await agent.rate_limiter.should_throttle(room, event.sender):
        return
    text = command_args(event.body.lstrip())

    # The model override still comes from the conversation
    context = await _read_context(agent, room)
    if context is None:
        return

    flat_text = text.replace("\n", " ")
    logger.info(f"Request: {event.sender} - {flat_text}")
    try:
        result = await agent.backend.execute(context.model, text)
    except BackendExecutionFailed as e:
        flat_error = str(e).replace("\n", " ")
        logger.error(f"Error: {flat_error}")
        await room.send_notice(f".error: {flat_error}")
        return
    flat_result = result.replace("\n", " ")
    logger.info(f"Response: {event.sender} - {flat_result}")
    # The ".response:" prefix keeps our answer out of future context
    await room.send_notice(f".response:\n{result}")


async def list_models(agent: MatrixLLMAgent, room: Room, event: HistoryEvent) -> None:
    context = await _read_context(agent, room)
    if context is None:
        return
    current = context.model or await agent.backend.default_model()
    models = await agent.backend.list_models()
    await room.send_notice(
        f".models:\n\ncurrent: {current}\n\nAvailable Models:\n" + "\n".join(models)
    )


async def select_model(agent: MatrixLLMAgent, room: Room, event: HistoryEvent) -> None:
    """Validate a model choice; the choice itself is read back from history later."""
    args = command_args(event.body.lstrip()).split()
    if not args:
        await list_models(agent, room, event)
        return

    model = args[0]
    models = await agent.backend.list_models()
    if model in models:
        await room.send_notice(f'.model: Set to "{model}"')
    else:
        await room.send_notice(
            f'.error: Model "{model}" not found.\n\nAvailable models:\n' + "\n".join(models)
        )


async def clear(agent: MatrixLLMAgent, room: Room, event: HistoryEvent) -> None:
    await room.send_notice(".clear: All messages before this will be ignored")


async def leave(agent: MatrixLLMAgent, room: Room, event: HistoryEvent) -> None:
    await room.send_notice(".leave: Leaving the room")
    await room.leave()


async def lurk(agent: MatrixLLMAgent, room: Room, event: HistoryEvent) -> None:
    await room.send_notice(".lurk: Will not engage in conversation")


async def nolurk(agent: MatrixLLMAgent, room: Room, event: HistoryEvent) -> None:
    await room.send_notice(".lurk: Will respond normally")


async def rename_room(agent: MatrixLLMAgent, room: Room, event: HistoryEvent) -> None:
    await rename(agent, room, event.sender)


BUILTIN_COMMANDS = (
    Command("party", None, party),
    # Not advertised: showing the role prompt can spoil a quirky character
    Command("fullcontext", None, full_context),
    Command("print", "Print the conversation", print_context),
    Command("send", "<message> - Send this message without context", send),
    Command("model", "<model> - Select the model to use", select_model),
    Command("list", "List available models", list_models),
    Command("clear", "Ignore all messages before this point", clear),
    Command("leave", "Leave the room", leave),
    Command("lurk", "Do not respond (does not affect notices)", lurk),
    Command("nolurk", "Stop lurking", nolurk),
    Command("rename", "Rename the room and set the topic based on the chat content", rename_room),
)


class CommandRouter:
    """Dispatches directives to their handlers and answers conversational turns."""

    def __init__(self, agent: MatrixLLMAgent, commands: tuple[Command, ...] = BUILTIN_COMMANDS):
        self.agent = agent
        registry = {command.name: command for command in commands}
        registry.setdefault("help", Command("help", "Show this help", self._help))
        self.commands: dict[str, Command] = registry

    def help_text(self) -> str:
        lines = [f".{c.name} {c.help}" for c in self.commands.values() if c.help]
        return ".help:\n" + "\n".join(lines)

    async def _help(self, agent: MatrixLLMAgent, room: Room, event: HistoryEvent) -> None:
        await room.send_notice(self.help_text())

    async def handle_text(self, room: Room, event: HistoryEvent) -> str:
        """Route an inbound text message.

        Returns:
            Short description of what was done, for logging
        """
        body = event.body.lstrip()
        if is_command(body):
            name = command_name(body)
            command = self.commands.get(name)
            if command is None:
                logger.info(f"Unknown command from {event.sender}: {body}")
                return "unknown command"
            logger.debug(f"Running command {name} for {event.sender} in {room.room_id}")
            await command.handler(self.agent, room, event)
            return f"command {name}"

        return await self.respond(room, event)

    async def respond(self, room: Room, event: HistoryEvent) -> str:
        """Answer a conversational message with the whole context."""
        agent = self.agent
        if await agent.rate_limiter.should_throttle(room, event.sender):
            return "rate limited"
        if event.sender == room.own_user_id:
            return "not responding to myself"

        try:
            context = await agent.history.get_context(room)
        except HistoryUnavailable as e:
            logger.error(f"Could not get context: {e}")
            return "could not get context"

        if context.lurk:
            return "lurking"

        prompt = agent.add_role(context.transcript) + "ASSISTANT: "
        flat_prompt = prompt.replace("\n", " ")
        logger.info(f"Request: {event.sender} - {flat_prompt}")
        try:
            response = await agent.backend.execute(context.model, prompt, context.media)
        except BackendExecutionFailed as e:
            flat_error = str(e).replace("\n", " ")
            logger.error(f"Error: {flat_error}")
            await room.send_notice(f".error: {flat_error}")
            return "error"

        flat_response = response.replace("\n", " ")
        logger.info(f"Response: {flat_response}")
        await room.send_reply(response, event)
        return "responded"
