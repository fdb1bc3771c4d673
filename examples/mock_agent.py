#!/usr/bin/env python3
"""Offline example of agentic-loop with scripted model responses.

Shows, without any API key:
- several tool calls in one model turn, run concurrently
- a tool that depends on another running in a later stage
- the confirmation gate, with one call denied
- the event stream of a run

Run:
    python examples/mock_agent.py
"""

import logging
import os
import sys

# Ensure the project root is in the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from agentic_loop import (
    Agent,
    LoopConfig,
    LoopResult,
    LoopStatus,
    ModelAdaptor,
    ModelResponse,
    Tool,
    ToolCall,
)
from tools import CalculatorTool, DigestTool, WebSearchTool


class MockModelAdaptor(ModelAdaptor):
    """Replays a fixed conversation, one response per call."""

    def __init__(self):
        self.call_count = 0
        self.responses = [
            ModelResponse(
                content="I'll calculate and search at the same time.",
                tool_calls=[
                    ToolCall(id="call-001", tool_name="digest", arguments='{"topic": "weather"}'),
                    ToolCall(id="call-002", tool_name="web_search", arguments={"query": "weather in São Paulo"}),
                    ToolCall(id="call-003", tool_name="calculator", arguments={"expression": "25 + 17"}),
                ],
            ),
            ModelResponse(
                tool_calls=[
                    ToolCall(id="call-004", tool_name="calculator", arguments={"expression": "100 * 2"}),
                ],
            ),
            ModelResponse(
                content=(
                    "Based on my calculations:\n"
                    "- 25 + 17 = 42\n"
                    "- The weather in São Paulo is partly cloudy at 28°C\n"
                    "- I wasn't allowed to compute 100 * 2"
                ),
            ),
        ]

    async def call(self, messages, tools: list[Tool], system_prompt: str = "", **kwargs) -> ModelResponse:
        if self.call_count >= len(self.responses):
            return ModelResponse(content="(Mock adaptor ran out of predefined responses)")
        response = self.responses[self.call_count]
        self.call_count += 1
        return response


def print_header(text: str, width: int = 70) -> None:
    print(f"\n{'=' * width}")
    print(f"  {text}")
    print(f"{'=' * width}\n")


def print_event(event) -> None:
    details = {
        "tool:call": lambda e: f"{e.tool_name} {e.arguments}",
        "tool:complete": lambda e: f"{e.tool_name} -> {e.result}",
        "tool:error": lambda e: f"{e.tool_name} !! {e.error}",
        "iteration:start": lambda e: f"{e.iteration}/{e.max_iterations}",
        "content:delta": lambda e: repr(e.delta[:40]),
        "processing:end": lambda e: e.status,
    }
    describe = details.get(event.type.value)
    print(f"  [{event.type.value}] {describe(event) if describe else ''}")


def print_result(result: LoopResult) -> None:
    print_header("Result")
    print(f"  Status: {result.status.value}")
    print(f"  Iterations: {result.iterations}")
    print(f"  Tokens: {result.usage.total_tokens}")
    for record in result.tool_calls:
        outcome = record.result if record.error is None else f"error: {record.error}"
        print(f"  - {record.tool_name} ({record.id}): {outcome}")
    print(f"\n{result.content}\n")


def main() -> int:
    logging.basicConfig(level=logging.WARNING)
    print_header("agentic-loop example (mocked)")

    agent = Agent(
        model=MockModelAdaptor(),
        tools=[CalculatorTool(), WebSearchTool(), DigestTool()],
        config=LoopConfig(max_iterations=5, require_confirmation=True),
    )

    result = agent.run("What is 25 + 17, what's the weather in São Paulo, and what is 100 * 2?", on_event=print_event)

    while result.status == LoopStatus.AWAITING_CONFIRMATION:
        # Approve everything except multiplications
        decisions = {}
        for request in result.pending.requests:
            if request.id not in result.pending.call_ids:
                continue
            approved = "*" not in str(request.arguments)
            decisions[request.id] = approved
            print(f"  {'approve' if approved else 'deny':>7}: {request.tool_name} {request.arguments}")
        result = agent.resume(result, decisions, on_event=print_event)

    print_result(result)
    return 0 if result.status == LoopStatus.COMPLETED else 1


if __name__ == "__main__":
    sys.exit(main())
