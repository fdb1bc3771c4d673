from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, Optional

from agentic_loop.execution import Message, ToolCall, Usage
from agentic_loop.tools import Tool

DeltaCallback = Callable[[str], None]


@dataclass
class ModelResponse:
    """One complete model turn: text, requested tool calls, or both."""

    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    usage: Optional[Usage] = None


@dataclass
class StreamChunk:
    """An incremental piece of a streamed turn.

    Text arrives as `delta`; adaptors usually report tool calls and usage on
    the last chunk once the provider has finished sending them.
    """

    delta: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    usage: Optional[Usage] = None


class ModelAdaptor:
    """Batch completion: one request, one complete turn."""

    async def call(
        self,
        messages: list[Message],
        tools: list[Tool],
        system_prompt: str = "",
        **kwargs,
    ) -> ModelResponse:
        """Call the model with messages and available tools."""
        raise NotImplementedError

    async def generate(
        self,
        messages: list[Message],
        tools: list[Tool],
        system_prompt: str = "",
        on_delta: Optional[DeltaCallback] = None,
    ) -> ModelResponse:
        """Produce a complete turn. Batch adaptors never report deltas."""
        return await self.call(messages, tools, system_prompt=system_prompt)


class StreamingModelAdaptor(ModelAdaptor):
    """Streaming completion: the turn arrives as a sequence of StreamChunks."""

    async def stream(
        self,
        messages: list[Message],
        tools: list[Tool],
        system_prompt: str = "",
        **kwargs,
    ) -> AsyncIterator[StreamChunk]:
        raise NotImplementedError
        yield  # pragma: no cover

    async def call(
        self,
        messages: list[Message],
        tools: list[Tool],
        system_prompt: str = "",
        **kwargs,
    ) -> ModelResponse:
        return await self.generate(messages, tools, system_prompt=system_prompt)

    async def generate(
        self,
        messages: list[Message],
        tools: list[Tool],
        system_prompt: str = "",
        on_delta: Optional[DeltaCallback] = None,
    ) -> ModelResponse:
        """Buffer the stream into one turn, reporting each delta as it arrives."""
        parts: list[str] = []
        tool_calls: list[ToolCall] = []
        usage: Optional[Usage] = None

        async for chunk in self.stream(messages, tools, system_prompt=system_prompt):
            if chunk.delta:
                parts.append(chunk.delta)
                if on_delta is not None:
                    on_delta(chunk.delta)
            tool_calls.extend(chunk.tool_calls)
            if chunk.usage is not None:
                usage = usage or Usage()
                usage.add(chunk.usage)

        return ModelResponse(content="".join(parts), tool_calls=tool_calls, usage=usage)
