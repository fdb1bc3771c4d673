"""Tools declared by a raw JSON Schema instead of a Pydantic model.

Converts the `parametersSchema` of a tool definition into a Pydantic model
so arguments are validated the same way as for hand-written tools.
"""

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Literal, Optional, Union

from pydantic import BaseModel, Field, create_model

from agentic_loop.tools import Tool

_JSON_TYPE_MAP: dict[str, type] = {
    "string": str,
    "number": float,
    "integer": int,
    "boolean": bool,
}


def _json_schema_to_python_type(prop_schema: dict, prop_name: str, parent_name: str) -> type:
    """Convert a single JSON Schema property to a Python type annotation.

    Handles: primitive types, typed arrays, nested objects, enums, and
    falls back to Any for unrecognized schemas ($ref, anyOf, oneOf, etc.).
    """
    if "enum" in prop_schema:
        values = tuple(prop_schema["enum"])
        return Literal[values]  # type: ignore[valid-type]

    schema_type = prop_schema.get("type")

    if schema_type is None:
        return Any

    if schema_type in _JSON_TYPE_MAP:
        return _JSON_TYPE_MAP[schema_type]

    if schema_type == "array":
        items = prop_schema.get("items")
        if items and "type" in items and items["type"] in _JSON_TYPE_MAP:
            return list[_JSON_TYPE_MAP[items["type"]]]
        return list

    if schema_type == "object":
        if "properties" in prop_schema:
            nested_name = f"{parent_name}_{prop_name}"
            return schema_to_model(nested_name, prop_schema)
        return dict

    return Any


def schema_to_model(tool_name: str, schema: dict) -> type[BaseModel]:
    """Convert a JSON Schema object definition to a Pydantic model.

    Non-required fields become Optional with their declared default (or
    None). Descriptions are carried over so the regenerated schema the model
    sees keeps them.
    """
    properties = schema.get("properties", {})
    required = set(schema.get("required", []))
    fields: dict[str, Any] = {}

    for prop_name, prop_schema in properties.items():
        python_type = _json_schema_to_python_type(prop_schema, prop_name, tool_name)
        is_required = prop_name in required
        default = ... if is_required else prop_schema.get("default", None)
        description = prop_schema.get("description", "")

        if not is_required and default is None:
            python_type = Optional[python_type]

        fields[prop_name] = (python_type, Field(default=default, description=description))

    return create_model(f"{tool_name}_Input", **fields)


Handler = Callable[..., Union[Any, Awaitable[Any]]]


class SchemaTool(Tool):
    """Wraps a plain function and its JSON Schema as a Tool.

    The handler receives validated arguments as keyword arguments and may be
    sync or async.

    Usage:
        add = SchemaTool(
            name="add",
            description="Add two integers",
            parameters_schema={
                "type": "object",
                "properties": {"a": {"type": "integer"}, "b": {"type": "integer"}},
                "required": ["a", "b"],
            },
            handler=lambda a, b: a + b,
        )
    """

    def __init__(
        self,
        name: str,
        description: str,
        parameters_schema: dict,
        handler: Handler,
        depends_on: tuple[str, ...] = (),
        timeout: Optional[float] = None,
        requires_confirmation: bool = False,
        risk_level: Optional[str] = None,
    ):
        self.name = name
        self.description = description
        self.parameters_schema = parameters_schema
        self.input_model = schema_to_model(name, parameters_schema)
        self.depends_on = tuple(depends_on)
        self.timeout = timeout
        self.requires_confirmation = requires_confirmation
        self.risk_level = risk_level
        self._handler = handler

    def schema(self) -> dict:
        return self.parameters_schema

    async def execute(self, **kwargs):
        if inspect.iscoroutinefunction(self._handler):
            return await self._handler(**kwargs)
        # Sync handlers run in a worker thread so they can't stall the event loop
        result = await asyncio.to_thread(self._handler, **kwargs)
        if inspect.isawaitable(result):
            result = await result
        return result
