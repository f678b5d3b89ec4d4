"""Error taxonomy for the conversation loop.

Fatal errors propagate out of ``ConversationEngine.run``; RecoverableToolError
is absorbed into the conversation by the tool executor.
"""
from typing import Any, Optional


class AgentLoopError(Exception):
    """Base class for every error raised by the loop."""


class FatalStartupError(AgentLoopError):
    """A configured back-end could not be opened or listed."""

    def __init__(self, backend: str, message: str):
        super().__init__(f"Backend '{backend}' failed to start: {message}")
        self.backend = backend


class CompletionError(AgentLoopError):
    """The completion service call failed."""


class CompletionTimeoutError(CompletionError):
    def __init__(self, timeout: float):
        super().__init__(f"Completion did not answer within {timeout}s")
        self.timeout = timeout


class UnknownToolError(AgentLoopError):
    """The model asked for a tool that no back-end owns."""

    def __init__(self, tool_name: str):
        super().__init__(f"Tool server not found for tool {tool_name}")
        self.tool_name = tool_name


class RecoverableToolError(AgentLoopError):
    """Structured error returned by a reachable back-end."""

    def __init__(self, message: str, code: Optional[int] = None, data: Any = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data

    def as_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "data": self.data}


_USER_MESSAGES = [
    (FatalStartupError, "A tool server could not be started. Please contact the bot administrator."),
    (CompletionTimeoutError, "The language model took too long to answer. Please try again later."),
    (CompletionError, "There was a problem calling the language model. Please wait a moment and try again."),
    (UnknownToolError, "The model asked for a tool that is not available."),
]


def user_message(error: BaseException) -> str:
    """Short user-facing text for an error, most specific class first."""
    for cls, text in _USER_MESSAGES:
        if isinstance(error, cls):
            return text
    return "Sorry, something went wrong while processing your request. Please try again later."
