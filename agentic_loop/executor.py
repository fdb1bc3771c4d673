import asyncio
import logging
import time
from typing import Optional

from agentic_loop.events import EventEmitter, ToolCallEvent, ToolCompleteEvent, ToolErrorEvent
from agentic_loop.execution import ToolCall, ToolCallRecord
from agentic_loop.tools import Tool

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


class ToolExecutor:
    """Runs one resolved tool and captures the outcome as a ToolCallRecord.

    Any exception raised by the tool, including a timeout, becomes an error
    record; nothing is retried here because tool side effects may not be
    idempotent.

    Args:
        default_timeout: Seconds allowed per call when none is given.
    """

    def __init__(self, default_timeout: float = DEFAULT_TIMEOUT):
        self.default_timeout = default_timeout

    def announce(self, call: ToolCall, events: EventEmitter) -> None:
        """Emit tool:call for `call`. Used to announce a whole stage up front."""
        events.emit(ToolCallEvent(tool_name=call.tool_name, call_id=call.id, arguments=dict(call.arguments)))

    async def execute(
        self,
        tool: Tool,
        call: ToolCall,
        arguments: Optional[dict] = None,
        timeout: Optional[float] = None,
        events: Optional[EventEmitter] = None,
        announced: bool = False,
    ) -> ToolCallRecord:
        """Execute `tool` for `call`.

        Args:
            tool: The resolved tool.
            call: The request being served; its arguments go into the record.
            arguments: Validated keyword arguments for the tool. Defaults to
                the request's arguments.
            timeout: Seconds before the call is abandoned as an error.
            events: Emitter for tool:call / tool:complete / tool:error.
            announced: tool:call was already emitted through `announce`.
        """
        timeout = timeout or self.default_timeout
        kwargs = call.arguments if arguments is None else arguments
        record = ToolCallRecord(id=call.id, tool_name=call.tool_name, arguments=dict(call.arguments))

        if events is not None and not announced:
            self.announce(call, events)

        start = time.time()
        try:
            result = await asyncio.wait_for(tool.execute(**kwargs), timeout=timeout)
        except asyncio.TimeoutError:
            error = f"Tool '{call.tool_name}' timed out after {timeout}s"
        except Exception as e:
            error = str(e) or type(e).__name__
        else:
            record.succeed(result, duration_ms=(time.time() - start) * 1000)
            logger.debug("Tool '%s' (%s) succeeded in %.1fms", call.tool_name, call.id, record.duration_ms)
            if events is not None:
                events.emit(
                    ToolCompleteEvent(
                        call_id=call.id,
                        result=result,
                        tool_name=call.tool_name,
                        duration_ms=record.duration_ms,
                    )
                )
            return record

        record.fail(error, duration_ms=(time.time() - start) * 1000)
        logger.warning("Tool '%s' (%s) failed: %s", call.tool_name, call.id, error)
        if events is not None:
            events.emit(
                ToolErrorEvent(
                    call_id=call.id,
                    error=error,
                    tool_name=call.tool_name,
                    duration_ms=record.duration_ms,
                )
            )
        return record
