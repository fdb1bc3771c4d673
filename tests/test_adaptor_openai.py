"""Tests for OpenAI ModelAdaptors."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from pydantic import BaseModel

from agentic_loop.adaptors.openai import OpenAIAdaptor, OpenAIStreamingAdaptor
from agentic_loop.execution import Message, ToolCall
from agentic_loop.intent import ToolRequests, classify
from agentic_loop.tools import Tool


# --- Test Fixtures ---


class DummyToolInput(BaseModel):
    query: str


class DummyTool(Tool):
    name = "dummy"
    description = "A dummy tool for testing"
    input_model = DummyToolInput

    async def execute(self, query: str) -> str:
        return f"Result for {query}"


class AnotherToolInput(BaseModel):
    value: int


class AnotherTool(Tool):
    name = "another"
    description = "Another dummy tool"
    input_model = AnotherToolInput

    async def execute(self, value: int) -> str:
        return f"Value is {value}"


def completion(content="", tool_calls=None, usage=None) -> dict:
    data = {
        "choices": [
            {
                "message": {
                    "role": "assistant",
                    "content": content,
                    "tool_calls": tool_calls,
                }
            }
        ]
    }
    if usage is not None:
        data["usage"] = usage
    return data


def function_call(call_id: str, name: str, arguments: dict) -> dict:
    return {
        "id": call_id,
        "type": "function",
        "function": {"name": name, "arguments": json.dumps(arguments)},
    }


def mock_http(status_code: int, body: dict):
    mock_response = MagicMock()
    mock_response.status_code = status_code
    mock_response.json.return_value = body
    mock_instance = AsyncMock()
    mock_instance.post.return_value = mock_response
    return mock_instance


# --- Tests for Initialization ---


class TestOpenAIAdaptorInit:
    def test_init_with_explicit_api_key(self):
        adaptor = OpenAIAdaptor(api_key="sk-test123", model="gpt-4")
        assert adaptor.api_key == "sk-test123"
        assert adaptor.model == "gpt-4"
        assert adaptor.base_url == "https://api.openai.com/v1"

    def test_init_with_env_var(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env123")
        adaptor = OpenAIAdaptor()
        assert adaptor.api_key == "sk-env123"
        assert adaptor.model == "gpt-5-mini"  # Default

    def test_init_custom_base_url(self):
        adaptor = OpenAIAdaptor(api_key="sk-test", base_url="http://localhost:8000/v1")
        assert adaptor.base_url == "http://localhost:8000/v1"

    def test_init_missing_api_key(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        with pytest.raises(ValueError, match="OpenAI API key not provided"):
            OpenAIAdaptor()

    def test_init_explicit_api_key_overrides_env(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
        adaptor = OpenAIAdaptor(api_key="sk-explicit")
        assert adaptor.api_key == "sk-explicit"


# --- Tests for Message Conversion ---


class TestConvertMessages:
    def test_convert_single_user_message(self):
        adaptor = OpenAIAdaptor(api_key="sk-test")
        result = adaptor._convert_messages([Message(role="user", content="Hello")])

        assert result == [{"role": "user", "content": "Hello"}]

    def test_convert_tool_message(self):
        adaptor = OpenAIAdaptor(api_key="sk-test")
        messages = [Message(role="tool", content="Tool result", tool_call_id="call_123")]

        result = adaptor._convert_messages(messages)

        assert result[0]["role"] == "tool"
        assert result[0]["tool_call_id"] == "call_123"

    def test_convert_assistant_message_with_tool_calls(self):
        adaptor = OpenAIAdaptor(api_key="sk-test")
        messages = [
            Message(
                role="assistant",
                content="",
                tool_calls=(
                    ToolCall(id="call_1", tool_name="dummy", arguments={"query": "test"}),
                    ToolCall(id="call_2", tool_name="another", arguments={"value": 42}),
                ),
            )
        ]

        result = adaptor._convert_messages(messages)

        assert result[0]["role"] == "assistant"
        assert [tc["id"] for tc in result[0]["tool_calls"]] == ["call_1", "call_2"]
        first = result[0]["tool_calls"][0]
        assert first["type"] == "function"
        assert first["function"]["name"] == "dummy"
        assert json.loads(first["function"]["arguments"]) == {"query": "test"}

    def test_system_prompt_is_prepended(self):
        adaptor = OpenAIAdaptor(api_key="sk-test")
        payload = adaptor._build_payload(
            [Message(role="user", content="Hi")], [DummyTool()], "Be brief."
        )

        assert payload["messages"][0] == {"role": "system", "content": "Be brief."}
        assert payload["messages"][1]["role"] == "user"
        assert payload["tool_choice"] == "auto"
        assert payload["tools"][0]["function"]["name"] == "dummy"

    def test_no_tools_omits_tool_fields(self):
        adaptor = OpenAIAdaptor(api_key="sk-test")
        payload = adaptor._build_payload([Message(role="user", content="Hi")], [], "")

        assert "tools" not in payload
        assert "tool_choice" not in payload
        assert payload["messages"] == [{"role": "user", "content": "Hi"}]


# --- Tests for Tool Conversion ---


class TestConvertTool:
    def test_convert_tool_basic(self):
        adaptor = OpenAIAdaptor(api_key="sk-test")

        result = adaptor._convert_tool(DummyTool())

        assert result["type"] == "function"
        assert result["function"]["name"] == "dummy"
        assert result["function"]["description"] == "A dummy tool for testing"
        assert "query" in result["function"]["parameters"]["properties"]


# --- Tests for Response Parsing ---


class TestParseResponse:
    def test_parse_final_response(self):
        adaptor = OpenAIAdaptor(api_key="sk-test")

        result = adaptor._parse_response(completion("This is the final answer."))

        assert result.content == "This is the final answer."
        assert result.tool_calls == []
        assert result.usage is None

    def test_parse_multiple_tool_calls(self):
        adaptor = OpenAIAdaptor(api_key="sk-test")
        data = completion(
            "Multiple calls",
            tool_calls=[
                function_call("call_1", "dummy", {"query": "first"}),
                function_call("call_2", "another", {"value": 42}),
            ],
        )

        result = adaptor._parse_response(data)

        assert [tc.id for tc in result.tool_calls] == ["call_1", "call_2"]
        # Arguments stay raw; the intent parser decodes them
        assert result.tool_calls[0].arguments == '{"query": "first"}'
        intent = classify(result)
        assert isinstance(intent, ToolRequests)
        assert intent.requests[1].arguments == {"value": 42}

    def test_parse_usage(self):
        adaptor = OpenAIAdaptor(api_key="sk-test")

        result = adaptor._parse_response(
            completion("hi", usage={"prompt_tokens": 12, "completion_tokens": 3, "total_tokens": 15})
        )

        assert result.usage.prompt_tokens == 12
        assert result.usage.completion_tokens == 3

    def test_parse_response_missing_choices(self):
        adaptor = OpenAIAdaptor(api_key="sk-test")

        with pytest.raises(ValueError, match="missing 'choices'"):
            adaptor._parse_response({})

    def test_parse_response_empty_content(self):
        adaptor = OpenAIAdaptor(api_key="sk-test")

        result = adaptor._parse_response(completion(None))

        assert result.content == ""


# --- Tests for API Calls ---


class TestOpenAIAdaptorCall:
    @pytest.mark.asyncio
    async def test_call_final_response(self):
        adaptor = OpenAIAdaptor(api_key="sk-test")
        mock_instance = mock_http(200, completion("Hi there!"))

        with patch("httpx.AsyncClient") as mock_client:
            mock_client.return_value.__aenter__.return_value = mock_instance

            result = await adaptor.call([Message(role="user", content="Hello")], [])

        assert result.content == "Hi there!"

    @pytest.mark.asyncio
    async def test_call_sends_system_prompt_and_model(self):
        adaptor = OpenAIAdaptor(api_key="sk-test", model="gpt-4", base_url="http://localhost:8000/v1")
        mock_instance = mock_http(200, completion("Response"))

        with patch("httpx.AsyncClient") as mock_client:
            mock_client.return_value.__aenter__.return_value = mock_instance

            await adaptor.call(
                [Message(role="user", content="Hello")], [DummyTool()], system_prompt="Be brief."
            )

        call_args = mock_instance.post.call_args
        assert call_args.args[0] == "http://localhost:8000/v1/chat/completions"
        payload = call_args.kwargs["json"]
        assert payload["model"] == "gpt-4"
        assert payload["messages"][0]["content"] == "Be brief."
        assert call_args.kwargs["headers"]["Authorization"] == "Bearer sk-test"

    @pytest.mark.asyncio
    async def test_call_api_error(self):
        adaptor = OpenAIAdaptor(api_key="sk-test")
        mock_instance = mock_http(401, {"error": {"message": "Invalid API key"}})

        with patch("httpx.AsyncClient") as mock_client:
            mock_client.return_value.__aenter__.return_value = mock_instance

            with pytest.raises(ValueError, match="Invalid API key"):
                await adaptor.call([Message(role="user", content="Hello")], [])


# --- Tests for Streaming ---


def sse(*payloads) -> list[str]:
    lines = [": keep-alive", ""]
    for payload in payloads:
        lines.append(f"data: {json.dumps(payload)}")
        lines.append("")
    lines.append("data: [DONE]")
    return lines


def mock_stream(lines: list[str], status_code: int = 200, body: bytes = b""):
    async def aiter_lines():
        for line in lines:
            yield line

    response = MagicMock()
    response.status_code = status_code
    response.aiter_lines = aiter_lines
    response.aread = AsyncMock(return_value=body)

    stream_ctx = MagicMock()
    stream_ctx.__aenter__ = AsyncMock(return_value=response)
    stream_ctx.__aexit__ = AsyncMock(return_value=False)

    client = MagicMock()
    client.stream = MagicMock(return_value=stream_ctx)
    return client


class TestOpenAIStreamingAdaptor:
    @pytest.mark.asyncio
    async def test_text_deltas(self):
        adaptor = OpenAIStreamingAdaptor(api_key="sk-test")
        client = mock_stream(
            sse(
                {"choices": [{"delta": {"role": "assistant", "content": "The "}}]},
                {"choices": [{"delta": {"content": "answer"}}]},
                {"choices": [], "usage": {"prompt_tokens": 5, "completion_tokens": 2}},
            )
        )
        deltas = []

        with patch("httpx.AsyncClient") as mock_client:
            mock_client.return_value.__aenter__.return_value = client

            response = await adaptor.generate(
                [Message(role="user", content="Hi")], [], on_delta=deltas.append
            )

        assert deltas == ["The ", "answer"]
        assert response.content == "The answer"
        assert response.usage.total_tokens == 7
        payload = client.stream.call_args.kwargs["json"]
        assert payload["stream"] is True
        assert payload["stream_options"] == {"include_usage": True}

    @pytest.mark.asyncio
    async def test_tool_call_fragments_are_merged(self):
        adaptor = OpenAIStreamingAdaptor(api_key="sk-test")
        client = mock_stream(
            sse(
                {"choices": [{"delta": {"tool_calls": [
                    {"index": 0, "id": "call_1", "function": {"name": "dummy", "arguments": ""}}
                ]}}]},
                {"choices": [{"delta": {"tool_calls": [
                    {"index": 1, "id": "call_2", "function": {"name": "another", "arguments": '{"val'}}
                ]}}]},
                {"choices": [{"delta": {"tool_calls": [
                    {"index": 0, "function": {"arguments": '{"query": "x"}'}}
                ]}}]},
                {"choices": [{"delta": {"tool_calls": [
                    {"index": 1, "function": {"arguments": 'ue": 1}'}}
                ]}}]},
            )
        )

        with patch("httpx.AsyncClient") as mock_client:
            mock_client.return_value.__aenter__.return_value = client

            response = await adaptor.generate([Message(role="user", content="Hi")], [DummyTool()])

        assert response.content == ""
        intent = classify(response)
        assert intent.requests == [
            ToolCall(id="call_1", tool_name="dummy", arguments={"query": "x"}),
            ToolCall(id="call_2", tool_name="another", arguments={"value": 1}),
        ]

    @pytest.mark.asyncio
    async def test_call_reads_the_stream(self):
        adaptor = OpenAIStreamingAdaptor(api_key="sk-test")
        client = mock_stream(
            sse(
                {"choices": [{"delta": {"content": "Hello"}}]},
                {"choices": [{"delta": {"content": " there"}}]},
            )
        )

        with patch("httpx.AsyncClient") as mock_client:
            mock_client.return_value.__aenter__.return_value = client

            response = await adaptor.call([Message(role="user", content="Hi")], [])

        assert response.content == "Hello there"
        client.stream.assert_called_once()
        client.post.assert_not_called()

    @pytest.mark.asyncio
    async def test_stream_error_status(self):
        adaptor = OpenAIStreamingAdaptor(api_key="sk-test")
        client = mock_stream([], status_code=429, body=b'{"error": {"message": "Rate limited"}}')

        with patch("httpx.AsyncClient") as mock_client:
            mock_client.return_value.__aenter__.return_value = client

            with pytest.raises(ValueError, match="Rate limited"):
                await adaptor.call([Message(role="user", content="Hi")], [])

    def test_parse_event(self):
        assert OpenAIStreamingAdaptor._parse_event("") is None
        assert OpenAIStreamingAdaptor._parse_event(": comment") is None
        assert OpenAIStreamingAdaptor._parse_event("data: [DONE]") is None
        assert OpenAIStreamingAdaptor._parse_event('data: {"a": 1}') == {"a": 1}
