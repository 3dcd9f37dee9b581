import asyncio
import json

import pytest

from chatloom.config import SessionConfig
from chatloom.context import ToolContext
from chatloom.memory import InMemoryStore
from chatloom.provider import ChatRequest, ModelProvider
from chatloom.session import ChatSession
from chatloom.streaming import DoneFragment, TextFragment, ToolUseFragment
from chatloom.tools import Tool, tool


# ---------------------------------------------------------------------------
# Mock providers
# ---------------------------------------------------------------------------

class MockProvider(ModelProvider):
    """Provider that replays pre-queued fragment scripts. No network calls.

    Each ``chat()`` call pops one script. Script items are yielded in
    order, except:

    - an ``asyncio.Event`` is awaited (use it to hold a stream open);
    - an exception instance is raised.
    """

    def __init__(self):
        self.scripts: list[list] = []
        self.call_log: list[ChatRequest] = []
        self.yielded: int = 0
        self.closed: int = 0

    async def chat(self, request, cancellation=None):
        self.call_log.append(request)
        script = self.scripts.pop(0)
        try:
            for item in script:
                if isinstance(item, asyncio.Event):
                    await item.wait()
                elif isinstance(item, BaseException):
                    raise item
                else:
                    self.yielded += 1
                    yield item
        finally:
            self.closed += 1


class RejectingProvider(ModelProvider):
    """Provider whose ``chat()`` fails before producing a stream."""

    def __init__(self, message: str):
        self.message = message

    async def chat(self, request, cancellation=None):
        raise ConnectionError(self.message)


# ---------------------------------------------------------------------------
# Script builders
# ---------------------------------------------------------------------------

def text_script(*chunks: str, finish_reason: str = "stop") -> list:
    """Text fragments followed by a done marker."""
    return [TextFragment(chunk=c) for c in chunks] + [
        DoneFragment(finish_reason=finish_reason)
    ]


def tool_use(name: str, args: dict, call_id: str = "call_1") -> ToolUseFragment:
    return ToolUseFragment(name=name, args_delta=json.dumps(args), id=call_id)


async def settle(rounds: int = 5) -> None:
    """Let pending callbacks and background tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------

def _weather(args: dict, context: ToolContext) -> dict:
    unit = args.get("unit", "celsius")
    return {
        "location": args["location"],
        "temperature": 72 if unit == "fahrenheit" else 22,
        "unit": unit,
        "condition": "Sunny",
    }


@tool
def echo(text: str):
    """Echo back the text."""
    return text


@pytest.fixture
def weather_tool():
    return Tool(
        name="get_weather",
        title="Get Weather",
        description="Get current weather information for a location",
        parameters_schema={
            "type": "object",
            "properties": {
                "location": {"type": "string", "description": "City"},
                "unit": {"type": "string", "enum": ["celsius", "fahrenheit"]},
            },
            "required": ["location"],
        },
        executor=_weather,
        render_result=lambda result: {"type": "weather_card", "data": result},
    )


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------

@pytest.fixture
def mock_provider():
    return MockProvider()


@pytest.fixture
def fast_config():
    """Publish windows short enough for tests to wait them out."""
    return SessionConfig(
        streaming_publish_interval=0.02,
        idle_publish_interval=0.005,
    )


@pytest.fixture
def memory():
    return InMemoryStore()


@pytest.fixture
def make_session(mock_provider, fast_config):
    """Factory fixture building sessions on the mock provider."""

    def _make(provider=None, session_id=None, memory=None, config=None):
        return ChatSession(
            provider or mock_provider,
            session_id=session_id,
            memory=memory,
            config=config or fast_config,
        )

    return _make
