"""Shared tool definitions for the examples."""

import asyncio
from typing import Any

from pydantic import Field

from agentic_loop import Tool, ToolExecutionError, ToolInput


class CalculatorInput(ToolInput):
    """Input model for the calculator tool."""

    expression: str = Field(
        ...,
        description="A mathematical expression to evaluate (e.g., '2 + 2', '10 * 5')",
    )


class CalculatorTool(Tool):
    """Evaluates arithmetic expressions with builtins disabled."""

    name = "calculator"
    description = (
        "Evaluates mathematical expressions and returns the result. "
        "Supports basic operations: +, -, *, /, **, //, %"
    )
    input_model = CalculatorInput

    async def execute(self, expression: str) -> dict[str, Any]:
        safe_dict = {
            "__builtins__": {},
            "abs": abs,
            "round": round,
            "max": max,
            "min": min,
        }
        try:
            result = eval(expression, safe_dict)
        except ZeroDivisionError:
            raise ToolExecutionError("Division by zero")
        except SyntaxError as e:
            raise ToolExecutionError(f"Syntax error: {e.msg}")
        return {"expression": expression, "result": result}


class WebSearchInput(ToolInput):
    """Input model for the web search tool."""

    query: str = Field(
        ...,
        description="Search query to find information about (e.g., 'weather in São Paulo')",
    )


_MOCK_RESULTS = {
    "weather": [
        {
            "title": "Weather in São Paulo",
            "url": "https://weather.example.com/sp",
            "snippet": "São Paulo weather: Partly cloudy, 28°C, humid",
        }
    ],
    "python": [
        {
            "title": "Python Programming Language",
            "url": "https://python.org",
            "snippet": "Python is a high-level programming language known for its simplicity.",
        }
    ],
}


class WebSearchTool(Tool):
    """Simulated web search. A real implementation would call a search API."""

    name = "web_search"
    description = (
        "Performs a web search and returns simulated results. "
        "For demonstration purposes, returns mock results."
    )
    input_model = WebSearchInput
    timeout = 10.0

    async def execute(self, query: str) -> dict[str, Any]:
        await asyncio.sleep(0.2)  # pretend network latency
        query_lower = query.lower()
        for keyword, results in _MOCK_RESULTS.items():
            if keyword in query_lower:
                break
        else:
            results = [
                {
                    "title": f"Search results for: {query}",
                    "url": "https://search.example.com",
                    "snippet": f"Mock search result for query: {query}",
                }
            ]
        return {"query": query, "results": results, "count": len(results)}


class DigestInput(ToolInput):
    topic: str = Field(..., description="What the digest should be about")


class DigestTool(Tool):
    """Writes a digest of whatever was searched in the same turn.

    Declares a dependency on web_search, so when both are requested together
    the digest runs after every search has finished.
    """

    name = "digest"
    description = "Summarizes search results gathered in this turn into a short digest"
    input_model = DigestInput
    depends_on = ("web_search",)

    async def execute(self, topic: str) -> str:
        return f"Digest for {topic}: searches complete, see results above."
