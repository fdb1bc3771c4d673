"""OpenAI API adaptors for agentic-loop."""

import json
import os
from typing import AsyncIterator, Optional

import httpx

from agentic_loop.execution import Message, ToolCall, Usage
from agentic_loop.model import ModelAdaptor, ModelResponse, StreamChunk, StreamingModelAdaptor
from agentic_loop.tools import Tool


class OpenAIAdaptor(ModelAdaptor):
    """OpenAI-compatible model adaptor.

    Supports OpenAI API and compatible endpoints (local models, proxies, etc.).

    Args:
        api_key: OpenAI API key. Falls back to OPENAI_API_KEY environment variable.
        model: Model name (default: gpt-5-mini).
        base_url: Base URL for the API (default: https://api.openai.com/v1).
        timeout: Request timeout in seconds (default: 60).
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "gpt-5-mini",
        base_url: Optional[str] = None,
        timeout: float = 60.0,
    ):
        self.api_key = api_key or os.environ.get("OPENAI_API_KEY")
        if not self.api_key:
            raise ValueError(
                "OpenAI API key not provided. "
                "Pass api_key argument or set OPENAI_API_KEY environment variable."
            )

        self.model = model
        self.base_url = base_url or "https://api.openai.com/v1"
        self.timeout = timeout

    async def call(
        self,
        messages: list[Message],
        tools: list[Tool],
        system_prompt: str = "",
        **kwargs,
    ) -> ModelResponse:
        """Call the OpenAI API with messages and available tools.

        Args:
            messages: Conversation history.
            tools: Tools the model may call.
            system_prompt: Prepended as a system message when non-empty.
            **kwargs: Additional arguments passed to the API.

        Returns:
            ModelResponse with content, tool calls and usage.

        Raises:
            ValueError: If API response is malformed or unexpected.
            httpx.HTTPError: If the API request fails.
        """
        payload = self._build_payload(messages, tools, system_prompt, **kwargs)

        async with httpx.AsyncClient() as client:
            response = await client.post(
                f"{self.base_url}/chat/completions",
                json=payload,
                headers=self._headers(),
                timeout=kwargs.get("timeout", self.timeout),
            )

        if response.status_code != 200:
            raise ValueError(f"OpenAI API error: {self._error_message(response.json())}")

        return self._parse_response(response.json())

    def _build_payload(
        self, messages: list[Message], tools: list[Tool], system_prompt: str, **kwargs
    ) -> dict:
        openai_messages = self._convert_messages(messages)
        if system_prompt:
            openai_messages.insert(0, {"role": "system", "content": system_prompt})

        payload = {
            "model": self.model,
            "messages": openai_messages,
        }

        openai_tools = [self._convert_tool(tool) for tool in tools] if tools else None
        if openai_tools:
            payload["tools"] = openai_tools
            payload["tool_choice"] = kwargs.get("tool_choice", "auto")
        return payload

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    @staticmethod
    def _error_message(error_data: dict) -> str:
        return error_data.get("error", {}).get("message", "Unknown error")

    def _convert_messages(self, messages: list[Message]) -> list[dict]:
        """Convert agentic-loop Message objects to OpenAI format."""
        openai_messages = []
        for msg in messages:
            openai_msg = {"role": msg.role, "content": msg.content}

            if msg.tool_call_id:
                openai_msg["tool_call_id"] = msg.tool_call_id

            if msg.role == "assistant" and msg.tool_calls:
                openai_msg["tool_calls"] = self._format_tool_calls(msg.tool_calls)

            openai_messages.append(openai_msg)
        return openai_messages

    def _format_tool_calls(self, tool_calls) -> list[dict]:
        """Convert ToolCall objects to OpenAI tool_calls format."""
        formatted = []
        for tool_call in tool_calls:
            formatted.append({
                "id": tool_call.id,
                "type": "function",
                "function": {
                    "name": tool_call.tool_name,
                    "arguments": json.dumps(tool_call.arguments),
                },
            })
        return formatted

    def _convert_tool(self, tool: Tool) -> dict:
        """Convert an agentic-loop Tool to OpenAI tool format."""
        return {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.schema(),
            },
        }

    def _parse_response(self, data: dict) -> ModelResponse:
        """Parse OpenAI API response into ModelResponse.

        Tool call arguments are left as the JSON strings OpenAI sends; the
        loop parses them.

        Raises:
            ValueError: If response format is unexpected.
        """
        if not data.get("choices"):
            raise ValueError("OpenAI response missing 'choices' field")

        message = data["choices"][0].get("message", {})
        tool_calls = [
            ToolCall(
                id=tc.get("id", ""),
                tool_name=tc.get("function", {}).get("name", ""),
                arguments=tc.get("function", {}).get("arguments", ""),
            )
            for tc in message.get("tool_calls") or []
        ]
        return ModelResponse(
            content=message.get("content") or "",
            tool_calls=tool_calls,
            usage=self._parse_usage(data.get("usage")),
        )

    @staticmethod
    def _parse_usage(usage: Optional[dict]) -> Optional[Usage]:
        if not usage:
            return None
        return Usage(
            prompt_tokens=usage.get("prompt_tokens", 0),
            completion_tokens=usage.get("completion_tokens", 0),
        )


class OpenAIStreamingAdaptor(StreamingModelAdaptor, OpenAIAdaptor):
    """OpenAI-compatible adaptor that streams content over server-sent events.

    Text deltas are yielded as they arrive. Tool call fragments are
    accumulated by index and yielded, with usage, on the final chunk.
    `call` also goes through the stream.
    """

    async def stream(
        self,
        messages: list[Message],
        tools: list[Tool],
        system_prompt: str = "",
        **kwargs,
    ) -> AsyncIterator[StreamChunk]:
        payload = self._build_payload(messages, tools, system_prompt, **kwargs)
        payload["stream"] = True
        payload["stream_options"] = {"include_usage": True}

        fragments: dict[int, dict] = {}
        usage: Optional[Usage] = None

        async with httpx.AsyncClient() as client:
            async with client.stream(
                "POST",
                f"{self.base_url}/chat/completions",
                json=payload,
                headers=self._headers(),
                timeout=kwargs.get("timeout", self.timeout),
            ) as response:
                if response.status_code != 200:
                    body = await response.aread()
                    raise ValueError(f"OpenAI API error: {self._error_message(json.loads(body))}")

                async for line in response.aiter_lines():
                    data = self._parse_event(line)
                    if data is None:
                        continue
                    if data.get("usage"):
                        usage = self._parse_usage(data["usage"])
                    for choice in data.get("choices") or []:
                        delta = choice.get("delta") or {}
                        for fragment in delta.get("tool_calls") or []:
                            self._merge_fragment(fragments, fragment)
                        if delta.get("content"):
                            yield StreamChunk(delta=delta["content"])

        tool_calls = [
            ToolCall(id=f["id"], tool_name=f["name"], arguments=f["arguments"])
            for _, f in sorted(fragments.items())
        ]
        if tool_calls or usage is not None:
            yield StreamChunk(tool_calls=tool_calls, usage=usage)

    @staticmethod
    def _parse_event(line: str) -> Optional[dict]:
        """Decode one SSE line; None for blank lines, comments and [DONE]."""
        if not line.startswith("data:"):
            return None
        body = line[len("data:"):].strip()
        if not body or body == "[DONE]":
            return None
        return json.loads(body)

    @staticmethod
    def _merge_fragment(fragments: dict[int, dict], fragment: dict) -> None:
        entry = fragments.setdefault(
            fragment.get("index", 0), {"id": "", "name": "", "arguments": ""}
        )
        if fragment.get("id"):
            entry["id"] = fragment["id"]
        function = fragment.get("function") or {}
        if function.get("name"):
            entry["name"] += function["name"]
        if function.get("arguments"):
            entry["arguments"] += function["arguments"]
