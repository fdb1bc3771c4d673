"""Minimal agentic-loop example with streamed output. Requires OPENAI_API_KEY."""

import asyncio
import os

from pydantic import Field

from agentic_loop import Agent, LoopConfig, OpenAIStreamingAdaptor, Tool, ToolInput


class CityInput(ToolInput):
    city: str = Field(description="City name")


class GetPopulation(Tool):
    name = "get_population"
    description = "Returns the approximate population of a city"
    input_model = CityInput

    async def execute(self, city: str) -> str:
        populations = {"tokyo": "14M", "paris": "2.1M", "new york": "8.3M"}
        return populations.get(city.lower(), "unknown")


agent = Agent(
    model=OpenAIStreamingAdaptor(api_key=os.environ["OPENAI_API_KEY"], model="gpt-4.1-mini"),
    tools=[GetPopulation()],
    config=LoopConfig(system_prompt="Answer in one sentence."),
)


@agent.on("tool:complete")
def on_tool_complete(event):
    print(f"\n[tool] {event.tool_name} -> {event.result}")


async def main():
    async for event in agent.stream("What's the population of Tokyo and Paris?"):
        if event.type == "content:delta":
            print(event.delta, end="", flush=True)
    print()


if __name__ == "__main__":
    asyncio.run(main())
