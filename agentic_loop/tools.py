import logging
from typing import Iterable, Iterator, Optional

from pydantic import BaseModel

from agentic_loop.exceptions import ToolRegistrationError

logger = logging.getLogger(__name__)


class ToolInput(BaseModel):
    """Subclass this for tool-specific input validation."""


class Tool:
    name: str
    description: str
    input_model: type[BaseModel]
    # Tool names whose results this tool needs when requested in the same turn
    depends_on: tuple[str, ...] = ()
    # Overrides LoopConfig.tool_timeout when set (seconds)
    timeout: Optional[float] = None
    # Gate calls to this tool for a caller decision even when the config doesn't
    requires_confirmation: bool = False
    # "low" | "medium" | "high"; reported with confirmation requests
    risk_level: Optional[str] = None

    def schema(self) -> dict:
        """Return JSON schema from Pydantic model."""
        return self.input_model.model_json_schema()

    async def execute(self, **kwargs):
        """Execute tool. Always async; sync tools wrap sync code.

        Pydantic validates inputs before this is called.
        """
        raise NotImplementedError


class ToolRegistry:
    """Maps tool names to tools for one or more loop invocations.

    Passed explicitly to the Agent; the loop only reads from it while a run
    is in flight.

    Usage:
        registry = ToolRegistry([SearchTool()])
        registry.register(CalculatorTool())
        agent = Agent(model=model, registry=registry)
    """

    def __init__(self, tools: Optional[Iterable[Tool]] = None):
        self._tools: dict[str, Tool] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: Tool) -> Tool:
        name = getattr(tool, "name", None)
        if not name:
            raise ToolRegistrationError(f"Tool {tool!r} has no name")
        if name in self._tools:
            raise ToolRegistrationError(f"Tool '{name}' is already registered")
        self._tools[name] = tool
        logger.debug("Registered tool '%s'", name)
        return tool

    def get(self, name: str) -> Optional[Tool]:
        return self._tools.get(name)

    def schemas(self) -> list[dict]:
        """Return {name, description, parameters} for every registered tool."""
        return [
            {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.schema(),
            }
            for tool in self._tools.values()
        ]

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[Tool]:
        return iter(list(self._tools.values()))

    def __len__(self) -> int:
        return len(self._tools)
