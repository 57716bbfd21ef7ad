"""Recognition of dot-prefixed chat directives."""

import re

COMMAND_PREFIX = "."

# A single prefix followed by a word; a doubled prefix ("..") escapes it
_COMMAND_RE = re.compile(rf"^{re.escape(COMMAND_PREFIX)}(?![{re.escape(COMMAND_PREFIX)}\s])")


def is_command(text: str) -> bool:
    """Check whether a message body is a directive rather than conversation."""
    return bool(_COMMAND_RE.match(text.lstrip()))


def command_name(text: str) -> str:
    """Get the directive name, e.g. "model" for ".model gpt-4"."""
    parts = text.split(maxsplit=1)
    return parts[0][len(COMMAND_PREFIX) :] if parts else ""


def command_args(text: str) -> str:
    """Get everything after the directive name, stripped."""
    parts = text.split(maxsplit=1)
    return parts[1].strip() if len(parts) > 1 else ""
