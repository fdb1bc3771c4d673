import logging
from typing import Sequence

from agentic_loop.exceptions import InvalidPlan
from agentic_loop.execution import ToolCall
from agentic_loop.tools import ToolRegistry

logger = logging.getLogger(__name__)

Stage = list[ToolCall]


def build_plan(
    requests: Sequence[ToolCall],
    registry: ToolRegistry,
    parallel: bool = True,
) -> list[Stage]:
    """Order the tool requests of one turn into stages.

    Requests in the same stage may run concurrently. A request whose tool
    declares `depends_on` a tool that is also requested in this turn goes
    into a later stage than every request for that tool. Within a stage,
    requests keep the order the model sent them in.

    With `parallel=False` every request gets its own stage, in request order.

    Raises:
        InvalidPlan: If the declared dependencies form a cycle.
    """
    if not requests:
        return []
    if not parallel:
        return [[request] for request in requests]

    dependencies: list[set[int]] = []
    for i, request in enumerate(requests):
        tool = registry.get(request.tool_name)
        needed = set(getattr(tool, "depends_on", ()) or ())
        dependencies.append(
            {
                j
                for j, other in enumerate(requests)
                if j != i and other.tool_name in needed
            }
        )

    stages: list[Stage] = []
    done: set[int] = set()
    remaining = list(range(len(requests)))

    while remaining:
        ready = [i for i in remaining if dependencies[i] <= done]
        if not ready:
            names = sorted({requests[i].tool_name for i in remaining})
            raise InvalidPlan(f"Cyclic tool dependencies between: {', '.join(names)}")
        stages.append([requests[i] for i in ready])
        done.update(ready)
        remaining = [i for i in remaining if i not in done]

    if len(stages) > 1:
        logger.debug(
            "Planned %d requests into %d stages", len(requests), len(stages)
        )
    return stages
