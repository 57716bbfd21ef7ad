"""Room title and topic generation from the conversation."""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from .errors import BackendExecutionFailed, HistoryUnavailable, PermissionDenied
from .rooms import Room

if TYPE_CHECKING:
    from .main import MatrixLLMAgent

logger = logging.getLogger(__name__)

TITLE_PROMPT = "".join(
    [
        "\nUSER: Summarize this conversation in less than 20 characters to use as the title of this conversation. ",
        "The output should be a single line of text describing the conversation. ",
        "Do not output anything except for the summary text. ",
        "Only the first 20 characters will be used. ",
        "\nASSISTANT: ",
    ]
)

TOPIC_PROMPT = "".join(
    [
        "\nUSER: Summarize this conversation in less than 50 characters. ",
        "Do not output anything except for the summary text. ",
        "Do not include any commentary or context, only the summary. ",
        "\nASSISTANT: ",
    ]
)

_QUOTED_RE = re.compile(r'"([^"]*)"')


def clean_summary_response(response: str, max_length: int | None = None) -> str:
    """Pull the summary out of a chatty model response.

    Models often wrap the answer in commentary, so the first double-quoted
    string is used when there is one.
    """
    match = _QUOTED_RE.search(response)
    cleaned = match.group(1) if match else response
    if max_length is not None:
        return cleaned[:max_length]
    return cleaned


async def _summarize(
    agent: MatrixLLMAgent, sender: str, model: str | None, prompt: str
) -> str | None:
    flat_prompt = prompt.replace("\n", " ")
    logger.info(f"Request: {sender} - {flat_prompt}")
    try:
        result = await agent.backend.execute(model, prompt)
    except BackendExecutionFailed as e:
        logger.error(f"Error: {e}")
        return None
    flat_result = result.replace("\n", " ")
    logger.info(f"Response: {sender} - {flat_result}")
    return clean_summary_response(result)


async def rename(agent: MatrixLLMAgent, room: Room, sender: str) -> None:
    """Set the room name and topic from a summary of the conversation."""
    if await agent.rate_limiter.should_throttle(room, sender):
        return

    try:
        context = await agent.history.get_context(room)
    except HistoryUnavailable as e:
        logger.error(f"Could not get context for rename: {e}")
        await room.send_notice(".error: could not read the room history")
        return

    model = agent.config.chat_summary_model

    title = await _summarize(agent, sender, model, context.transcript + TITLE_PROMPT)
    if title is not None:
        try:
            await room.set_name(title)
        except PermissionDenied:
            await room.send_notice(".error: I don't have permission to rename the room")
            # If we can't set the name, we can't set the topic either
            return

    topic = await _summarize(agent, sender, model, context.transcript + TOPIC_PROMPT)
    if topic is not None:
        try:
            await room.set_topic(topic)
        except PermissionDenied:
            await room.send_notice(".error: I don't have permission to set the topic")
