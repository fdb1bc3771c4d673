import json
import time
from typing import Optional

from agentic_loop.execution import (
    LoopResult,
    LoopState,
    PendingConfirmation,
    ToolCallRecord,
    ToolCallStatus,
)


def format_tool_result(record: ToolCallRecord) -> str:
    """Render a settled record as the content of a tool-result message."""
    if record.status == ToolCallStatus.ERROR:
        return f"Error: {record.error}"
    result = record.result
    if result is None:
        return ""
    if isinstance(result, str):
        return result
    try:
        return json.dumps(result)
    except (TypeError, ValueError):
        return str(result)


def build_result(state: LoopState, pending: Optional[PendingConfirmation] = None) -> LoopResult:
    """Assemble the caller-facing result from a loop's state.

    The content is the last assistant turn produced by this invocation.
    Lists are copied so later resumes can't change a result already handed out.
    """
    content = ""
    for message in reversed(state.new_messages):
        if message.role == "assistant":
            content = message.content
            break

    end_time = state.end_time or time.time()
    return LoopResult(
        status=state.status,
        content=content,
        tool_calls=list(state.tool_calls),
        iterations=state.iteration,
        messages=list(state.new_messages),
        history=list(state.history),
        usage=state.usage,
        duration_ms=(end_time - state.start_time) * 1000,
        pending=pending,
    )
