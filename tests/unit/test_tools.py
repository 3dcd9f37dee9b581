import pytest

from chatloom.context import ToolContext
from chatloom.exceptions import ToolNotFoundError, ToolValidationError
from chatloom.tools import (
    Tool,
    ToolRegistry,
    _build_parameters_schema,
    _parse_param_descriptions,
    tool,
)


# ---------------------------------------------------------------------------
# Schema generation (_build_parameters_schema)
# ---------------------------------------------------------------------------


class TestBuildParametersSchema:
    def test_python_types_map_to_json_schema_types(self):
        def func(a: str, b: int, c: float, d: bool, e: list, f: dict):
            pass

        schema, _ = _build_parameters_schema(func)
        assert schema["properties"]["a"]["type"] == "string"
        assert schema["properties"]["b"]["type"] == "integer"
        assert schema["properties"]["c"]["type"] == "number"
        assert schema["properties"]["d"]["type"] == "boolean"
        assert schema["properties"]["e"]["type"] == "array"
        assert schema["properties"]["f"]["type"] == "object"

    def test_generic_annotations_use_origin(self):
        def func(tags: list[str], extra: dict[str, int]):
            pass

        schema, _ = _build_parameters_schema(func)
        assert schema["properties"]["tags"]["type"] == "array"
        assert schema["properties"]["extra"]["type"] == "object"

    def test_context_param_excluded(self):
        def func(context, query: str):
            pass

        schema, required = _build_parameters_schema(func)
        assert "context" not in schema["properties"]
        assert "query" in schema["properties"]
        assert required == ["query"]

    def test_optional_params_not_required(self):
        def func(name: str, greeting: str = "hi"):
            pass

        schema, required = _build_parameters_schema(func)
        assert required == ["name"]
        assert schema["required"] == ["name"]

    def test_unannotated_param_defaults_to_string(self):
        def func(x):
            pass

        schema, _ = _build_parameters_schema(func)
        assert schema["properties"]["x"]["type"] == "string"


# ---------------------------------------------------------------------------
# Docstring param description parsing (_parse_param_descriptions)
# ---------------------------------------------------------------------------


class TestParseParamDescriptions:
    def test_google_style(self):
        def func(name: str, age: int):
            """Do something.

            Args:
                name: The user's name.
                age: The user's age.
            """

        assert _parse_param_descriptions(func) == {
            "name": "The user's name.",
            "age": "The user's age.",
        }

    def test_google_style_with_type_in_docstring(self):
        def func(name, age):
            """Do something.

            Args:
                name (str): The user's name.
                age (int): The user's age.
            """

        assert _parse_param_descriptions(func) == {
            "name": "The user's name.",
            "age": "The user's age.",
        }

    def test_google_section_ends_at_next_header(self):
        def func(name: str):
            """Do something.

            Args:
                name: The user's name.

            Returns:
                A greeting.
            """

        assert _parse_param_descriptions(func) == {"name": "The user's name."}

    def test_sphinx_rest_style(self):
        def func(name: str, age: int):
            """Do something.

            :param name: The user's name.
            :param age: The user's age.
            """

        assert _parse_param_descriptions(func) == {
            "name": "The user's name.",
            "age": "The user's age.",
        }

    def test_numpy_style(self):
        def func(name: str, age: int):
            """Do something.

            Parameters
            ----------
            name : str
                The user's name.
            age : int
                The user's age.

            Returns
            -------
            str
                A greeting.
            """

        assert _parse_param_descriptions(func) == {
            "name": "The user's name.",
            "age": "The user's age.",
        }

    def test_no_docstring(self):
        def func(x: str):
            pass

        assert _parse_param_descriptions(func) == {}

    def test_docstring_without_params_section(self):
        def func(x: str):
            """Just a summary."""

        assert _parse_param_descriptions(func) == {}

    def test_multiline_description(self):
        def func(query: str):
            """Search.

            Args:
                query: The search query string.
                    Supports boolean operators
                    and wildcards.
            """

        assert _parse_param_descriptions(func) == {
            "query": (
                "The search query string.\n"
                "Supports boolean operators\n"
                "and wildcards."
            ),
        }

    def test_undocumented_param_gets_empty_description(self):
        def func(a: str, b: int):
            """Do something.

            Args:
                a: Documented param.
            """

        schema, _ = _build_parameters_schema(func)
        assert schema["properties"]["a"]["description"] == "Documented param."
        assert schema["properties"]["b"]["description"] == ""


# ---------------------------------------------------------------------------
# @tool decorator
# ---------------------------------------------------------------------------


class TestToolDecorator:
    def test_bare_decorator(self):
        @tool
        def greet(name: str):
            """Say hello."""
            return f"Hello {name}"

        assert isinstance(greet, Tool)
        assert greet.name == "greet"
        assert greet.description == "Say hello."

    def test_decorator_with_args(self):
        @tool(name="custom_name", description="Custom desc", title="Greeter")
        def greet(name: str):
            """Original docstring."""
            return f"Hello {name}"

        assert greet.name == "custom_name"
        assert greet.description == "Custom desc"
        assert greet.title == "Greeter"

    def test_description_is_docstring_summary(self):
        @tool
        def search(query: str):
            """Search the knowledge base.

            Args:
                query: The search query string.
            """

        assert search.description == "Search the knowledge base."
        params = search.model_dump()["function"]["parameters"]["properties"]
        assert params["query"]["description"] == "The search query string."


def test_tool_model_dump_openai_format():
    @tool
    def greet(name: str):
        """Say hello."""

    assert greet.model_dump() == {
        "type": "function",
        "function": {
            "name": "greet",
            "description": "Say hello.",
            "parameters": {
                "type": "object",
                "properties": {
                    "name": {"type": "string", "description": ""},
                },
                "required": ["name"],
            },
        },
    }


# ---------------------------------------------------------------------------
# Tool.run: sync/async dispatch and context injection
# ---------------------------------------------------------------------------


class TestToolRun:
    @pytest.mark.asyncio
    async def test_sync_function(self):
        @tool
        def add(a: int, b: int):
            """Add numbers."""
            return a + b

        assert await add.run({"a": 2, "b": 3}, ToolContext()) == 5

    @pytest.mark.asyncio
    async def test_async_function(self):
        @tool
        async def fetch(url: str):
            """Fake fetch."""
            return {"status": 200, "url": url}

        result = await fetch.run({"url": "http://example.com"}, ToolContext())
        assert result == {"status": 200, "url": "http://example.com"}

    @pytest.mark.asyncio
    async def test_context_injected_by_name(self, memory):
        @tool
        def whoami(context: ToolContext):
            """Report the memory adapter."""
            return context.memory

        assert await whoami.run({}, ToolContext(memory=memory)) is memory

    @pytest.mark.asyncio
    async def test_plain_executor_gets_args_and_context(self):
        seen = {}

        def executor(args, context):
            seen["args"] = args
            seen["context"] = context
            return "ok"

        ctx = ToolContext()
        t = Tool(name="raw", executor=executor)
        assert await t.run({"x": 1}, ctx) == "ok"
        assert seen == {"args": {"x": 1}, "context": ctx}

    def test_render_defaults_to_identity(self):
        t = Tool(name="raw", executor=lambda a, c: None)
        assert t.render({"a": 1}) == {"a": 1}

    def test_render_uses_renderer(self, weather_tool):
        assert weather_tool.render({"t": 1}) == {
            "type": "weather_card",
            "data": {"t": 1},
        }


# ---------------------------------------------------------------------------
# ToolRegistry
# ---------------------------------------------------------------------------


class TestToolRegistry:
    def test_register_and_get(self, weather_tool):
        registry = ToolRegistry()
        registry.register(weather_tool)
        assert registry.get("get_weather") is weather_tool
        assert "get_weather" in registry

    def test_same_name_last_write_wins(self):
        registry = ToolRegistry()
        first = Tool(name="t", executor=lambda a, c: 1)
        second = Tool(name="t", executor=lambda a, c: 2)
        registry.register(first)
        registry.register(second)

        assert len(registry) == 1
        assert registry.snapshot() == [second]

    def test_rejects_missing_executor(self):
        with pytest.raises(ToolValidationError, match="execute"):
            ToolRegistry().register(Tool(name="t"))

    def test_rejects_missing_name(self):
        with pytest.raises(ToolValidationError, match="name"):
            ToolRegistry().register(Tool(name="", executor=lambda a, c: 1))

    def test_rejects_non_tool(self):
        with pytest.raises(ToolValidationError):
            ToolRegistry().register({"name": "t"})

    def test_unregister_unknown_name(self):
        with pytest.raises(ToolNotFoundError, match="Tool ghost not found"):
            ToolRegistry().unregister("ghost")

    def test_unregister_removes(self, weather_tool):
        registry = ToolRegistry()
        registry.register(weather_tool)
        registry.unregister("get_weather")
        assert registry.get("get_weather") is None

    def test_snapshot_is_detached(self, weather_tool):
        registry = ToolRegistry()
        registry.register(weather_tool)
        snapshot = registry.snapshot()
        registry.unregister("get_weather")
        assert snapshot == [weather_tool]
