"""Persona prompts prepended to the conversation transcript."""

import logging
from collections.abc import Sequence

from .config import RoleDetails
from .defaults import DEFAULT_ROLE

logger = logging.getLogger(__name__)

CONTEXT_PLACEHOLDER = "{context}"


def find_role(
    name: str | None,
    roles: Sequence[RoleDetails] | None,
    default_roles: Sequence[RoleDetails],
) -> RoleDetails:
    """Resolve a role by name, configured roles first, then the built-in ones."""
    wanted = name or DEFAULT_ROLE
    for candidate in [*(roles or ()), *default_roles]:
        if candidate.name == wanted:
            return candidate

    logger.warning(f"Role '{wanted}' not found, using '{DEFAULT_ROLE}'")
    for candidate in [*(roles or ()), *default_roles]:
        if candidate.name == DEFAULT_ROLE:
            return candidate
    raise ValueError(f"Default role '{DEFAULT_ROLE}' is not defined")


def render_examples(role: RoleDetails) -> str:
    return "".join(f"USER: {ex.user}\nASSISTANT: {ex.assistant}\n" for ex in role.examples)


def prepend_role(
    context: str,
    role: str | None,
    roles: Sequence[RoleDetails] | None,
    default_roles: Sequence[RoleDetails],
) -> str:
    """Wrap a transcript in the prompt of the selected role.

    Args:
        context: Chronological transcript ("USER: ...\\n" lines)
        role: Name of the active role, None for the default one
        roles: Roles defined in the config
        default_roles: Built-in roles

    Returns:
        The prompt with the role template and its examples ahead of the transcript
    """
    details = find_role(role, roles, default_roles)
    body = render_examples(details) + context

    if CONTEXT_PLACEHOLDER in details.prompt:
        return details.prompt.replace(CONTEXT_PLACEHOLDER, body)

    prompt = details.prompt
    if prompt and not prompt.endswith("\n"):
        prompt += "\n"
    return prompt + body
