import asyncio
import time

import pytest
from pydantic import BaseModel

from agentic_loop.events import EventEmitter, EventType
from agentic_loop.exceptions import ToolExecutionError
from agentic_loop.execution import ToolCall, ToolCallStatus
from agentic_loop.executor import ToolExecutor
from agentic_loop.schema import SchemaTool
from agentic_loop.tools import Tool


class SearchInput(BaseModel):
    query: str
    limit: int = 3


class SearchTool(Tool):
    name = "search"
    description = "Searches"
    input_model = SearchInput

    async def execute(self, query: str, limit: int = 3) -> list:
        return [f"{query}-{i}" for i in range(limit)]


class BrokenTool(Tool):
    name = "broken"
    description = "Fails"
    input_model = SearchInput

    async def execute(self, query: str, limit: int = 3):
        raise ToolExecutionError(f"index unavailable for '{query}'")


class SilentFailureTool(BrokenTool):
    async def execute(self, query: str, limit: int = 3):
        raise KeyError()


class SlowTool(SearchTool):
    async def execute(self, query: str, limit: int = 3):
        await asyncio.sleep(1)


def recording_emitter():
    events = []
    return EventEmitter(on_event=events.append), events


class TestToolExecutor:
    @pytest.mark.asyncio
    async def test_success(self):
        emitter, events = recording_emitter()
        call = ToolCall(id="call_1", tool_name="search", arguments={"query": "cats"})

        record = await ToolExecutor().execute(
            SearchTool(), call, arguments={"query": "cats", "limit": 2}, events=emitter
        )

        assert record.status == ToolCallStatus.SUCCESS
        assert record.result == ["cats-0", "cats-1"]
        assert record.arguments == {"query": "cats"}
        assert record.duration_ms >= 0
        assert [e.type for e in events] == [EventType.TOOL_CALL, EventType.TOOL_COMPLETE]
        assert events[1].result == ["cats-0", "cats-1"]

    @pytest.mark.asyncio
    async def test_defaults_to_request_arguments(self):
        call = ToolCall(id="call_1", tool_name="search", arguments={"query": "dogs", "limit": 1})
        record = await ToolExecutor().execute(SearchTool(), call)
        assert record.result == ["dogs-0"]

    @pytest.mark.asyncio
    async def test_exception_becomes_error_record(self):
        emitter, events = recording_emitter()
        call = ToolCall(id="call_1", tool_name="broken", arguments={"query": "cats"})

        record = await ToolExecutor().execute(BrokenTool(), call, events=emitter)

        assert record.status == ToolCallStatus.ERROR
        assert record.error == "index unavailable for 'cats'"
        assert record.result is None
        assert [e.type for e in events] == [EventType.TOOL_CALL, EventType.TOOL_ERROR]
        assert events[1].error == record.error

    @pytest.mark.asyncio
    async def test_exception_without_message_uses_class_name(self):
        call = ToolCall(id="call_1", tool_name="broken", arguments={"query": "x"})
        record = await ToolExecutor().execute(SilentFailureTool(), call)
        assert record.error == "KeyError"

    @pytest.mark.asyncio
    async def test_timeout(self):
        call = ToolCall(id="call_1", tool_name="search", arguments={"query": "x"})

        record = await ToolExecutor().execute(SlowTool(), call, timeout=0.01)

        assert record.status == ToolCallStatus.ERROR
        assert record.error == "Tool 'search' timed out after 0.01s"

    @pytest.mark.asyncio
    async def test_default_timeout(self):
        call = ToolCall(id="call_1", tool_name="search", arguments={"query": "x"})
        record = await ToolExecutor(default_timeout=0.01).execute(SlowTool(), call)
        assert "timed out" in record.error

    @pytest.mark.asyncio
    async def test_concurrent_executions_are_independent(self):
        executor = ToolExecutor()
        calls = [
            ToolCall(id=f"call_{i}", tool_name="search", arguments={"query": str(i), "limit": 1})
            for i in range(3)
        ]

        records = await asyncio.gather(*(executor.execute(SearchTool(), c) for c in calls))

        assert [r.id for r in records] == ["call_0", "call_1", "call_2"]
        assert [r.result for r in records] == [["0-0"], ["1-0"], ["2-0"]]

    @pytest.mark.asyncio
    async def test_announced_call_is_not_announced_twice(self):
        emitter, events = recording_emitter()
        call = ToolCall(id="call_1", tool_name="search", arguments={"query": "cats"})
        executor = ToolExecutor()

        executor.announce(call, emitter)
        await executor.execute(SearchTool(), call, events=emitter, announced=True)

        assert [e.type for e in events] == [EventType.TOOL_CALL, EventType.TOOL_COMPLETE]
        assert events[0].arguments == {"query": "cats"}

    @pytest.mark.asyncio
    async def test_blocking_sync_handler_times_out_without_stalling_the_loop(self):
        tool = SchemaTool(
            "block",
            "Blocks",
            {"type": "object", "properties": {}},
            handler=lambda: time.sleep(0.5),
        )
        call = ToolCall(id="call_1", tool_name="block", arguments={})
        ticks = []

        async def ticker():
            while True:
                await asyncio.sleep(0.01)
                ticks.append(1)

        ticking = asyncio.ensure_future(ticker())
        started = time.monotonic()
        try:
            record = await ToolExecutor().execute(tool, call, timeout=0.1)
        finally:
            ticking.cancel()

        assert record.status == ToolCallStatus.ERROR
        assert record.error == "Tool 'block' timed out after 0.1s"
        assert time.monotonic() - started < 0.4
        assert len(ticks) >= 3
