"""Classification of a raw model turn.

A turn is either a plain answer, a request to run one or more tools, or
output the loop can't act on. Providers disagree on how tool calls look
(argument dicts, JSON strings, OpenAI-style `function` wrappers), so this
module also normalizes them into ToolCall objects with dict arguments.
"""

import json
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Union

from agentic_loop.execution import ToolCall
from agentic_loop.model import ModelResponse

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Answer:
    text: str


@dataclass(frozen=True)
class ToolRequests:
    requests: list[ToolCall]
    text: str = ""  # prose sent alongside the calls, kept for observability


@dataclass(frozen=True)
class Malformed:
    reason: str
    text: str = ""


Intent = Union[Answer, ToolRequests, Malformed]


class _StructuralError(ValueError):
    pass


def classify(turn: ModelResponse) -> Intent:
    """Classify one model turn.

    Any tool call in the turn makes it a ToolRequests, even if the provider
    also sent text. An empty turn, or a tool call whose payload can't be
    parsed into a name and an argument object, is Malformed. Whether the
    arguments satisfy the tool's schema is not checked here.
    """
    text = turn.content or ""

    if turn.tool_calls:
        requests = []
        seen_ids = set()
        try:
            for index, raw in enumerate(turn.tool_calls):
                request = _normalize_call(raw, index)
                if request.id in seen_ids:
                    raise _StructuralError(f"duplicate tool call id '{request.id}'")
                seen_ids.add(request.id)
                requests.append(request)
        except _StructuralError as e:
            logger.debug("Malformed tool call payload: %s", e)
            return Malformed(reason=str(e), text=text)
        return ToolRequests(requests=requests, text=text)

    if not text.strip():
        return Malformed(reason="empty content with no tool calls", text=text)

    return Answer(text=text)


def _normalize_call(raw: Any, index: int) -> ToolCall:
    if isinstance(raw, ToolCall):
        call_id, name, arguments = raw.id, raw.tool_name, raw.arguments
    elif isinstance(raw, dict):
        function = raw.get("function")
        if isinstance(function, dict):
            name, arguments = function.get("name"), function.get("arguments")
        else:
            name, arguments = raw.get("name") or raw.get("tool_name"), raw.get("arguments")
        call_id = raw.get("id")
    else:
        raise _StructuralError(f"unsupported tool call payload {type(raw).__name__}")

    if not isinstance(name, str) or not name:
        raise _StructuralError(f"tool call #{index} has no tool name")

    return ToolCall(
        id=call_id or f"call_{uuid.uuid4().hex[:12]}",
        tool_name=name,
        arguments=_parse_arguments(arguments, name),
    )


def _parse_arguments(arguments: Any, name: str) -> dict:
    if arguments is None or arguments == "":
        return {}
    if isinstance(arguments, str):
        try:
            arguments = json.loads(arguments)
        except json.JSONDecodeError as e:
            raise _StructuralError(f"arguments for '{name}' are not valid JSON: {e}") from e
    if not isinstance(arguments, dict):
        raise _StructuralError(
            f"arguments for '{name}' must be an object, got {type(arguments).__name__}"
        )
    return arguments
