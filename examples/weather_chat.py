"""Interactive chat with a weather tool.

Demonstrates:
- Defining a tool with @tool (including a context-aware, cancellable one)
- Subscribing to coalesced session state updates
- Running pending tool calls and letting the model continue

Usage:
    Add OPENAI_API_KEY=sk-... to .env, then:
    uv run --env-file=.env examples/weather_chat.py
"""

import asyncio
import logging

from chatloom.config import SessionConfig
from chatloom.context import ToolContext
from chatloom.provider import create_openai_provider
from chatloom.session import ChatSession
from chatloom.state import SessionState, SessionStatus
from chatloom.tools import tool

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s:%(name)s:%(levelname)s:%(message)s',
    datefmt='%Y-%m-%d %H:%M:%S',
)


def render_weather(result: dict) -> dict:
    return {"type": "weather_card", "data": result}


@tool(title="Get Weather", render_result=render_weather)
async def get_weather(context: ToolContext, location: str, unit: str = "celsius"):
    """Get current weather information for a location.

    Args:
        location: The city or location to get weather for.
        unit: Temperature unit, "celsius" or "fahrenheit".
    """
    if context.cancellation and context.cancellation.cancelled:
        raise RuntimeError("Operation aborted")
    if context.logger:
        context.logger.info(f"weather lookup for {location} ({unit})")
    if not location.strip():
        return {"location": location, "error": "Location cannot be empty"}

    # Simulated API latency; stop() cancels the sleep.
    await asyncio.sleep(1.0)
    return {
        "location": location,
        "temperature": 72 if unit == "fahrenheit" else 22,
        "unit": unit,
        "condition": "Sunny",
        "humidity": 45,
        "wind_speed": "10 mph",
        "forecast": "Clear skies throughout the day",
    }


def show_status(state: SessionState):
    if state.status is SessionStatus.ERROR:
        print(f"[error] {state.error}")


async def main():
    session = ChatSession(
        create_openai_provider(),
        config=SessionConfig(
            default_model="gpt-4o-mini",
            system_prompt="You are a helpful weather assistant.",
        ),
    )
    session.register_tool(get_weather)
    session.subscribe(show_status)

    print("Weather Assistant\n")

    while True:
        try:
            user_input = input("You: ")
        except (KeyboardInterrupt, EOFError):
            print("\nGoodbye!")
            break
        if not user_input.strip():
            continue

        await session.send(user_input)
        while session.status is SessionStatus.TOOL_CALLING:
            call = session.current_tool_call
            result = await session.run_tool(call)
            print(f"[tool] {get_weather.render(result)}")
        print(f"Assistant: {session.messages[-1].text()}\n")


if __name__ == "__main__":
    asyncio.run(main())
