import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional


def _new_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class Message:
    role: str  # "user" | "assistant" | "system" | "tool"
    content: str
    id: str = field(default_factory=_new_id)
    timestamp: float = field(default_factory=time.time)
    tool_call_id: Optional[str] = None
    tool_calls: tuple = ()  # For assistant messages with tool calls
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        # Snapshot so the message can't change once it is in a history
        object.__setattr__(self, "tool_calls", tuple(self.tool_calls))
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))


@dataclass(frozen=True)
class ToolCall:
    """A model's request to invoke a tool.

    Adaptors may leave `arguments` as the raw JSON string the provider sent;
    the intent parser turns it into a dict before anything executes.
    """

    id: str
    tool_name: str
    arguments: Any = field(default_factory=dict)


class ToolCallStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"


@dataclass
class ToolCallRecord:
    id: str
    tool_name: str
    arguments: dict
    status: ToolCallStatus = ToolCallStatus.PENDING
    result: Any = None
    error: Optional[str] = None
    duration_ms: float = 0.0
    timestamp: float = field(default_factory=time.time)

    def succeed(self, result: Any, duration_ms: float = 0.0) -> None:
        self._settle(ToolCallStatus.SUCCESS, duration_ms)
        self.result = result

    def fail(self, error: str, duration_ms: float = 0.0) -> None:
        self._settle(ToolCallStatus.ERROR, duration_ms)
        self.error = error

    def _settle(self, status: ToolCallStatus, duration_ms: float) -> None:
        if self.status != ToolCallStatus.PENDING:
            raise RuntimeError(
                f"Tool call '{self.id}' already settled as {self.status.value}"
            )
        self.status = status
        self.duration_ms = duration_ms


class LoopStatus(str, Enum):
    RUNNING = "running"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class LoopConfig:
    max_iterations: int = 10
    require_confirmation: bool = False
    system_prompt: str = ""
    tool_timeout: float = 30.0  # seconds
    parallel_tool_calls: bool = True
    # Seconds allowed per model call; None waits indefinitely
    model_timeout: Optional[float] = 30.0

    def __post_init__(self):
        if (
            isinstance(self.max_iterations, bool)
            or not isinstance(self.max_iterations, int)
            or self.max_iterations < 1
        ):
            raise ValueError(
                f"max_iterations must be a positive integer, got {self.max_iterations!r}"
            )
        if self.tool_timeout <= 0:
            raise ValueError(f"tool_timeout must be positive, got {self.tool_timeout!r}")
        if self.model_timeout is not None and self.model_timeout <= 0:
            raise ValueError(f"model_timeout must be positive, got {self.model_timeout!r}")


@dataclass
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def add(self, other: Optional["Usage"]) -> None:
        if other is None:
            return
        self.prompt_tokens += other.prompt_tokens
        self.completion_tokens += other.completion_tokens


@dataclass
class LoopState:
    """Working state of one loop invocation. Never shared between invocations."""

    config: LoopConfig
    history: list[Message] = field(default_factory=list)
    base_length: int = 0  # number of caller-supplied history messages
    iteration: int = 0
    status: LoopStatus = LoopStatus.RUNNING
    tool_calls: list[ToolCallRecord] = field(default_factory=list)
    usage: Usage = field(default_factory=Usage)
    system_prompt: str = ""
    start_time: float = field(default_factory=time.time)
    end_time: Optional[float] = None
    error: Optional[str] = None

    def append(self, message: Message) -> None:
        self.history.append(message)

    def advance(self) -> int:
        self.iteration += 1
        return self.iteration

    @property
    def new_messages(self) -> list[Message]:
        return self.history[self.base_length:]


@dataclass
class PendingConfirmation:
    """Tool requests suspended at the confirmation gate.

    `requests` is the whole suspended turn. `gated_ids` names the requests
    that need a decision; when empty, every request does. Pass the owning
    LoopResult back to Agent.resume_async with one decision per gated id.
    Requests that aren't gated run as approved.
    """

    requests: list[ToolCall]
    state: LoopState
    gated_ids: list[str] = field(default_factory=list)

    @property
    def call_ids(self) -> list[str]:
        if self.gated_ids:
            return list(self.gated_ids)
        return [request.id for request in self.requests]


@dataclass
class LoopResult:
    status: LoopStatus
    content: str = ""
    tool_calls: list[ToolCallRecord] = field(default_factory=list)
    iterations: int = 0
    messages: list[Message] = field(default_factory=list)  # new turns only
    history: list[Message] = field(default_factory=list)
    usage: Usage = field(default_factory=Usage)
    duration_ms: float = 0.0
    pending: Optional[PendingConfirmation] = None
    metadata: dict = field(default_factory=dict)
