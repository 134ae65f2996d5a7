"""Error taxonomy for the bridge.

Per-event errors (EmptyPromptError, EmptyCompletionError and the OpenAI
transport errors) are contained by the dispatch that raised them.
SocketFatalError ends the event bridge and is handled by the supervisor.
ConfigLoadError happens before any client exists.
"""

from openai import OpenAIError

# Transport, auth and rate-limit failures from the completion API are passed
# through unchanged, so they keep the SDK's own exception types.
CompletionTransportError = OpenAIError


class SlackGPTError(Exception):
    """Base class for errors raised by slackgpt itself."""


class EmptyPromptError(SlackGPTError, ValueError):
    def __init__(self, message: str = "empty prompt"):
        super().__init__(message)


class EmptyCompletionError(SlackGPTError):
    def __init__(self, message: str = "completion returned no choices"):
        super().__init__(message)


class SocketFatalError(SlackGPTError):
    """The Socket Mode connection could not be opened or was lost for good."""


class ConfigLoadError(SlackGPTError):
    """The configuration file could not be read, parsed or validated."""
