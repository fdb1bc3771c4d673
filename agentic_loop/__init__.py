from agentic_loop.adaptors.openai import OpenAIAdaptor, OpenAIStreamingAdaptor

# Conditional import for the optional SDK-based adaptor
try:
    from agentic_loop.adaptors.anthropic import AnthropicAdaptor
except ImportError:
    pass

from agentic_loop.agent import Agent
from agentic_loop.events import (
    ConfirmationRequiredEvent,
    ContentDeltaEvent,
    ContentDiscardedEvent,
    Event,
    EventChannel,
    EventEmitter,
    EventType,
    IterationCompleteEvent,
    IterationStartEvent,
    KnowledgeRetrievedEvent,
    ProcessingEndEvent,
    ProcessingStartEvent,
    ToolCallEvent,
    ToolCompleteEvent,
    ToolErrorEvent,
)
from agentic_loop.exceptions import (
    AgentLoopError,
    InvalidPlan,
    InvalidToolArguments,
    IterationLimitExceeded,
    LoopError,
    LoopErrorKind,
    ProviderFailure,
    ToolExecutionError,
    ToolRegistrationError,
    UnknownTool,
)
from agentic_loop.execution import (
    LoopConfig,
    LoopResult,
    LoopState,
    LoopStatus,
    Message,
    PendingConfirmation,
    ToolCall,
    ToolCallRecord,
    ToolCallStatus,
    Usage,
)
from agentic_loop.executor import ToolExecutor
from agentic_loop.intent import Answer, Malformed, ToolRequests, classify
from agentic_loop.knowledge import KnowledgeResult, KnowledgeRetriever
from agentic_loop.model import ModelAdaptor, ModelResponse, StreamChunk, StreamingModelAdaptor
from agentic_loop.planning import build_plan
from agentic_loop.response import build_result
from agentic_loop.schema import SchemaTool
from agentic_loop.tools import Tool, ToolInput, ToolRegistry

__all__ = [
    # Core
    "Agent",
    "LoopConfig",
    "LoopResult",
    "LoopState",
    "LoopStatus",
    "Message",
    "PendingConfirmation",
    "ToolCall",
    "ToolCallRecord",
    "ToolCallStatus",
    "Usage",
    # Models
    "ModelAdaptor",
    "ModelResponse",
    "StreamChunk",
    "StreamingModelAdaptor",
    "OpenAIAdaptor",
    "OpenAIStreamingAdaptor",
    "AnthropicAdaptor",
    # Tools
    "SchemaTool",
    "Tool",
    "ToolExecutor",
    "ToolInput",
    "ToolRegistry",
    # Loop components
    "Answer",
    "Malformed",
    "ToolRequests",
    "build_plan",
    "build_result",
    "classify",
    "KnowledgeResult",
    "KnowledgeRetriever",
    # Events
    "Event",
    "EventChannel",
    "EventEmitter",
    "EventType",
    "ProcessingStartEvent",
    "ProcessingEndEvent",
    "IterationStartEvent",
    "IterationCompleteEvent",
    "ContentDeltaEvent",
    "ContentDiscardedEvent",
    "ToolCallEvent",
    "ToolCompleteEvent",
    "ToolErrorEvent",
    "KnowledgeRetrievedEvent",
    "ConfirmationRequiredEvent",
    # Exceptions
    "AgentLoopError",
    "InvalidPlan",
    "InvalidToolArguments",
    "IterationLimitExceeded",
    "LoopError",
    "LoopErrorKind",
    "ProviderFailure",
    "ToolExecutionError",
    "ToolRegistrationError",
    "UnknownTool",
]
