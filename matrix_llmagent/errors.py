"""Exception types shared across the agent."""


class LLMAgentError(Exception):
    """Base class for all agent errors."""


class ConfigurationMissing(LLMAgentError):
    """A required configuration value is absent or malformed."""


class HistoryUnavailable(LLMAgentError):
    """The room history could not be read."""


class MediaFetchFailed(LLMAgentError):
    """An attachment referenced in the history could not be downloaded."""


class BackendExecutionFailed(LLMAgentError):
    """The language backend returned an error instead of text."""


class PermissionDenied(LLMAgentError):
    """The homeserver refused a room metadata update."""
