from enum import Enum
from typing import Optional


class AgentLoopError(Exception):
    """Base exception for agentic-loop errors."""


class LoopErrorKind(str, Enum):
    ITERATION_LIMIT_EXCEEDED = "IterationLimitExceeded"
    PROVIDER_FAILURE = "ProviderFailure"
    UNKNOWN_TOOL = "UnknownTool"
    INVALID_TOOL_ARGUMENTS = "InvalidToolArguments"
    INVALID_PLAN = "InvalidPlan"


class LoopError(AgentLoopError):
    """Fatal error that terminates a loop invocation.

    Carries the working history and tool-call records accumulated so far,
    so callers can show progress or start a new invocation from there.
    """

    kind: LoopErrorKind

    def __init__(
        self,
        message: str,
        iteration: int = 0,
        history: Optional[list] = None,
        tool_calls: Optional[list] = None,
    ):
        super().__init__(message)
        self.iteration = iteration
        self.history = list(history or [])
        self.tool_calls = list(tool_calls or [])


class IterationLimitExceeded(LoopError):
    """Raised when max_iterations is reached without a plain-answer turn."""

    kind = LoopErrorKind.ITERATION_LIMIT_EXCEEDED


class ProviderFailure(LoopError):
    """Raised when the model adaptor fails or keeps returning malformed turns."""

    kind = LoopErrorKind.PROVIDER_FAILURE


class UnknownTool(LoopError):
    """Raised when the model calls a tool that isn't registered."""

    kind = LoopErrorKind.UNKNOWN_TOOL


class InvalidToolArguments(LoopError):
    """Raised when tool arguments fail Pydantic validation."""

    kind = LoopErrorKind.INVALID_TOOL_ARGUMENTS


class InvalidPlan(LoopError):
    """Raised when declared tool dependencies form a cycle."""

    kind = LoopErrorKind.INVALID_PLAN


class ToolRegistrationError(AgentLoopError):
    """Raised when a tool can't be added to a registry."""


class ToolExecutionError(AgentLoopError):
    """Raised by tools that fail in an expected way.

    The loop recovers it into an error record like any other exception.
    """
