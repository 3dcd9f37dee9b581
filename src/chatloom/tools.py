import inspect
import json
import logging
import re
import typing
from typing import Any, Callable

from pydantic import BaseModel, Field

from chatloom.context import ToolContext
from chatloom.exceptions import ToolNotFoundError, ToolValidationError

logger = logging.getLogger(__name__)

# Parameters with these names are injected by the session, never by the model.
_INJECTED_PARAMS = ("context",)

_JSON_TYPES = {
    "str": "string",
    "int": "integer",
    "float": "number",
    "bool": "boolean",
    "NoneType": "null",
    "dict": "object",
    "list": "array",
    "tuple": "array",
    "set": "array",
}

_GOOGLE_HEADER = re.compile(r"^(Args|Arguments|Parameters)\s*:\s*$")
_GOOGLE_ITEM = re.compile(r"^(\w+)\s*(?:\([^)]*\))?\s*:\s*(.*)$")
_REST_ITEM = re.compile(r"^:param\s+(?:[\w\[\], |]+\s+)?(\w+)\s*:\s*(.*)$")
_NUMPY_ITEM = re.compile(r"^(\w+)\s*(?::\s*.*)?$")


def _json_type(annotation: Any) -> str:
    if annotation is inspect.Parameter.empty:
        return "string"
    origin = typing.get_origin(annotation) or annotation
    if isinstance(origin, str):
        type_name = origin.split("[")[0].strip()
    else:
        type_name = getattr(origin, "__name__", "")
    return _JSON_TYPES.get(type_name, "string")


def _indent(line: str) -> int:
    return len(line) - len(line.lstrip())


def _parse_rest(lines: list[str]) -> dict[str, list[str]]:
    descs: dict[str, list[str]] = {}
    current = None
    for line in lines:
        m = _REST_ITEM.match(line.strip())
        if m:
            current = m.group(1)
            descs[current] = [m.group(2).strip()]
        elif current and line.strip() and _indent(line) > 0:
            descs[current].append(line.strip())
        else:
            current = None
    return descs


def _parse_google(lines: list[str]) -> dict[str, list[str]]:
    for start, line in enumerate(lines):
        if _GOOGLE_HEADER.match(line) and _indent(line) == 0:
            break
    else:
        return {}

    descs: dict[str, list[str]] = {}
    current = None
    item_indent = None
    for line in lines[start + 1:]:
        if not line.strip():
            continue
        indent = _indent(line)
        if indent == 0:
            break
        if item_indent is None:
            item_indent = indent
        if indent <= item_indent:
            m = _GOOGLE_ITEM.match(line.strip())
            current = m.group(1) if m else None
            if m:
                descs[current] = [m.group(2).strip()]
        elif current:
            descs[current].append(line.strip())
    return descs


def _parse_numpy(lines: list[str]) -> dict[str, list[str]]:
    for start in range(len(lines) - 1):
        underline = lines[start + 1].strip()
        if (
            lines[start].strip() in ("Parameters", "Arguments")
            and underline
            and set(underline) == {"-"}
        ):
            break
    else:
        return {}

    descs: dict[str, list[str]] = {}
    current = None
    for line in lines[start + 2:]:
        if not line.strip():
            continue
        if _indent(line) > 0:
            if current:
                descs[current].append(line.strip())
            continue
        if set(line.strip()) == {"-"}:
            # The previous "item" was the next section's header.
            descs.pop(current, None)
            break
        m = _NUMPY_ITEM.match(line.strip())
        if not m:
            break
        current = m.group(1)
        descs[current] = []
    return descs


def _parse_param_descriptions(func: Callable) -> dict[str, str]:
    """Extract per-parameter descriptions from a docstring.

    Supports Google (``Args:``), reST (``:param x:``) and NumPy
    (``Parameters`` + underline) sections.
    """
    doc = inspect.getdoc(func)
    if not doc:
        return {}
    lines = doc.splitlines()
    for parser in (_parse_rest, _parse_google, _parse_numpy):
        descs = parser(lines)
        if descs:
            return {name: "\n".join(parts) for name, parts in descs.items()}
    return {}


def _build_parameters_schema(func: Callable) -> tuple[dict, list[str]]:
    """Build a JSON schema for *func*'s parameters.

    Returns:
        The ``{"type": "object", ...}`` schema and the list of required
        parameter names.
    """
    signature = inspect.signature(func)
    descriptions = _parse_param_descriptions(func)
    properties = {}
    required = []
    for name, param in signature.parameters.items():
        if name in _INJECTED_PARAMS:
            continue
        if param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
            continue
        properties[name] = {
            "type": _json_type(param.annotation),
            "description": descriptions.get(name, ""),
        }
        if param.default is inspect.Parameter.empty:
            required.append(name)
    schema = {
        "type": "object",
        "properties": properties,
        "required": required,
    }
    return schema, required


def _empty_schema() -> dict:
    return {"type": "object", "properties": {}, "required": []}


class Tool(BaseModel):
    """A named capability the model can ask the host to run.

    ``executor`` is called as ``executor(args, context)`` and may be a
    plain function or a coroutine function. Build tools from ordinary
    functions with the :func:`tool` decorator, or construct them
    directly when the arguments are better handled as a dict.
    """

    name: str
    executor: Callable | None = Field(default=None, exclude=True)
    description: str = ""
    title: str | None = None
    parameters_schema: dict = Field(default_factory=_empty_schema)
    render_result: Callable | None = Field(default=None, exclude=True)
    model_config = {"arbitrary_types_allowed": True}

    def model_dump(self, **kwargs):
        """Override to return the function-tool schema sent to providers"""
        return self.get_schema()

    def model_dump_json(self, **kwargs):
        return json.dumps(self.get_schema())

    def get_schema(self) -> dict:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters_schema,
            },
        }

    async def run(self, args: dict[str, Any], context: ToolContext) -> Any:
        result = self.executor(args, context)
        if inspect.isawaitable(result):
            result = await result
        return result

    def render(self, result: Any) -> Any:
        if self.render_result is None:
            return result
        return self.render_result(result)


def tool(
    func: Callable | None = None,
    *,
    name: str | None = None,
    description: str | None = None,
    title: str | None = None,
    render_result: Callable | None = None,
):
    """Turn a function into a :class:`Tool`.

    Usable bare (``@tool``) or with overrides
    (``@tool(name="lookup")``). The schema comes from the signature and
    the docstring; a parameter named ``context`` receives the
    :class:`~chatloom.context.ToolContext` and is hidden from the model.
    """

    def decorate(f: Callable) -> Tool:
        schema, _ = _build_parameters_schema(f)
        wants_context = "context" in inspect.signature(f).parameters

        async def executor(args: dict[str, Any], context: ToolContext) -> Any:
            kwargs = dict(args or {})
            if wants_context:
                kwargs["context"] = context
            result = f(**kwargs)
            if inspect.isawaitable(result):
                result = await result
            return result

        summary = (inspect.getdoc(f) or "").split("\n\n")[0].strip()
        return Tool(
            name=name or f.__name__,
            executor=executor,
            description=description if description is not None else summary,
            title=title,
            parameters_schema=schema,
            render_result=render_result,
        )

    if func is not None:
        return decorate(func)
    return decorate


class ToolRegistry:
    """Tools keyed by name. Re-registering a name replaces the old tool."""

    def __init__(self):
        self._tools: dict[str, Tool] = {}

    def register(self, tool_def: Tool) -> None:
        if not isinstance(tool_def, Tool):
            raise ToolValidationError("Tool must be a Tool instance")
        if not tool_def.name or not isinstance(tool_def.name, str):
            raise ToolValidationError("Tool must have a valid name")
        if not callable(tool_def.executor):
            raise ToolValidationError("Tool must have an execute function")
        if tool_def.name in self._tools:
            logger.debug(f"Replacing tool {tool_def.name}")
        self._tools[tool_def.name] = tool_def

    def unregister(self, name: str) -> None:
        if not name or not isinstance(name, str):
            raise ToolValidationError("Tool name must be a valid string")
        if name not in self._tools:
            raise ToolNotFoundError(name)
        del self._tools[name]

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def snapshot(self) -> list[Tool]:
        """Tools in registration order; later registry edits don't touch it."""
        return list(self._tools.values())

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)
