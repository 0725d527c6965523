"""
Tool definitions and registry.

This module provides:
- Tool dataclass binding a JSON-schema declaration to a handler
- ToolResult for handlers that want to report failure without raising
- ToolRegistry for lookup by name
- tool_from_function for deriving a Tool from a typed function
"""

from __future__ import annotations

import asyncio
import inspect
import re
import types
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Literal, Union, get_args, get_origin, get_type_hints

import jsonschema

from ..errors import ToolArgumentError

_TOOL_NAME_RE = re.compile(r"^[a-zA-Z0-9_-]{1,64}$")

EMPTY_PARAMETERS: dict[str, Any] = {"type": "object", "properties": {}}


@dataclass
class ToolResult:
    """
    Explicit result from a tool handler.

    Handlers may return any JSON-serializable value; returning a ToolResult
    lets them flag a failure without raising.

    Attributes:
        content: The tool's output
        success: Whether execution succeeded
        error: Error message if execution failed
        metadata: Additional data about execution
    """

    content: Any = None
    success: bool = True
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success_result(cls, content: Any) -> ToolResult:
        return cls(content=content, success=True)

    @classmethod
    def error_result(cls, error: str) -> ToolResult:
        return cls(success=False, error=error)


@dataclass
class Tool:
    """
    Definition of a callable tool for the agent.

    Attributes:
        name: Unique identifier for the tool within a run
        description: Human-readable description (shown to the model)
        parameters: JSON Schema defining the tool's parameters
        handler: Function invoked with the parsed arguments as keywords;
            coroutine functions are awaited, plain functions run in a thread
        strict: Validate arguments against ``parameters`` before invoking

    Example:
        ```python
        async def get_weather(city: str) -> dict:
            return {"temp": 72, "unit": "F"}

        weather = Tool(
            name="get_weather",
            description="Current weather for a city",
            parameters={
                "type": "object",
                "properties": {"city": {"type": "string"}},
                "required": ["city"],
            },
            handler=get_weather,
        )
        ```
    """

    name: str
    description: str
    handler: Callable[..., Any]
    parameters: dict[str, Any] = field(default_factory=lambda: dict(EMPTY_PARAMETERS))
    strict: bool = False

    def definition(self) -> dict[str, Any]:
        """Provider-neutral declaration of this tool."""
        return {"name": self.name, "description": self.description, "parameters": self.parameters}

    def validate_arguments(self, args: dict[str, Any]) -> None:
        """Check ``args`` against the parameter schema.

        Raises:
            ToolArgumentError: If validation fails.
        """
        try:
            jsonschema.validate(instance=args, schema=self.parameters or EMPTY_PARAMETERS)
        except jsonschema.ValidationError as e:
            path = ".".join(str(p) for p in e.path)
            msg = f"Validation failed at '{path}': {e.message}" if path else f"Validation error: {e.message}"
            raise ToolArgumentError(msg, tool_name=self.name, cause=e) from e

    async def invoke(self, args: dict[str, Any]) -> Any:
        """Run the handler with ``args`` and return whatever it returns."""
        if self.strict:
            self.validate_arguments(args)

        if inspect.iscoroutinefunction(self.handler):
            return await self.handler(**args)

        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(None, partial(self.handler, **args))
        if inspect.isawaitable(result):
            return await result
        return result


class ToolRegistry:
    """
    Registry for managing tools by name.

    Example:
        ```python
        registry = ToolRegistry([weather_tool])
        registry.register(calculator_tool)
        tool = registry.get("get_weather")
        ```
    """

    def __init__(self, tools: Sequence[Tool] | None = None) -> None:
        self._tools: dict[str, Tool] = {}

        if tools:
            for tool in tools:
                self.register(tool)

    @classmethod
    def coerce(cls, tools: ToolRegistry | Sequence[Tool] | None) -> ToolRegistry:
        """Accept a registry, a list of tools or nothing."""
        if isinstance(tools, ToolRegistry):
            return tools
        return cls(list(tools or []))

    def register(self, tool: Tool) -> ToolRegistry:
        """
        Register a tool.

        Returns:
            Self for chaining

        Raises:
            ValueError: If the name is invalid or already registered
        """
        if not _TOOL_NAME_RE.match(tool.name):
            raise ValueError(f"Invalid tool name {tool.name!r}: use 1-64 letters, digits, '_' or '-'")
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' is already registered")
        if tool.parameters and tool.parameters.get("type", "object") != "object":
            raise ValueError(f"Tool '{tool.name}' parameters must be an object schema")

        self._tools[tool.name] = tool
        return self

    def unregister(self, name: str) -> bool:
        """Remove a tool; returns False if it was not registered."""
        if name in self._tools:
            del self._tools[name]
            return True
        return False

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def __iter__(self) -> Iterator[Tool]:
        return iter(self._tools.values())

    @property
    def tools(self) -> list[Tool]:
        return list(self._tools.values())

    @property
    def names(self) -> list[str]:
        return list(self._tools.keys())


def _python_type_to_json_schema(py_type: Any) -> dict[str, Any]:
    """Convert Python type annotations to JSON Schema."""
    origin = get_origin(py_type)

    if origin is Union or origin is types.UnionType:
        non_none = [a for a in get_args(py_type) if a is not type(None)]
        if len(non_none) == 1:
            return _python_type_to_json_schema(non_none[0])
        return {"anyOf": [_python_type_to_json_schema(a) for a in non_none]}

    if origin is Literal:
        values = list(get_args(py_type))
        schema = _python_type_to_json_schema(type(values[0])) if values else {}
        schema["enum"] = values
        return schema

    if origin in (list, tuple, set, Sequence):
        args = get_args(py_type)
        return {"type": "array", "items": _python_type_to_json_schema(args[0]) if args else {}}

    if origin is dict or py_type is dict:
        return {"type": "object"}

    if py_type is list:
        return {"type": "array", "items": {}}

    type_map = {
        str: {"type": "string"},
        int: {"type": "integer"},
        float: {"type": "number"},
        bool: {"type": "boolean"},
        type(None): {"type": "null"},
        Any: {},
    }

    return dict(type_map.get(py_type, {"type": "string"}))


def _param_descriptions(doc: str | None) -> dict[str, str]:
    """Pull ``name: description`` lines out of an ``Args:`` docstring section."""
    descriptions: dict[str, str] = {}
    if not doc:
        return descriptions
    in_args = False
    for line in doc.splitlines():
        stripped = line.strip()
        if stripped in ("Args:", "Arguments:", "Parameters:"):
            in_args = True
            continue
        if in_args:
            if not stripped:
                continue
            if stripped.endswith(":") and " " not in stripped:
                break
            name, sep, text = stripped.partition(":")
            name = name.split("(")[0].strip()
            if sep and name.isidentifier():
                descriptions[name] = text.strip()
    return descriptions


def tool_from_function(
    func: Callable[..., Any],
    *,
    name: str | None = None,
    description: str | None = None,
    strict: bool = False,
) -> Tool:
    """
    Create a Tool from a function (sync or async).

    Uses the function signature and docstring to generate the tool
    definition. Synchronous functions run in the default executor when
    invoked.

    Example:
        ```python
        async def get_weather(city: str, units: str = "fahrenheit") -> dict:
            '''Get current weather for a city.

            Args:
                city: Name of the city
                units: Temperature units
            '''
            return {"temp": 72, "unit": "F"}

        weather_tool = tool_from_function(get_weather)
        ```
    """
    sig = inspect.signature(func)
    hints = get_type_hints(func)
    param_docs = _param_descriptions(func.__doc__)

    properties: dict[str, Any] = {}
    required: list[str] = []

    for param_name, param in sig.parameters.items():
        if param_name in ("self", "cls"):
            continue
        if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
            continue

        param_schema = _python_type_to_json_schema(hints.get(param_name, str))
        if param_name in param_docs:
            param_schema["description"] = param_docs[param_name]
        properties[param_name] = param_schema

        if param.default is inspect.Parameter.empty:
            required.append(param_name)

    parameters: dict[str, Any] = {
        "type": "object",
        "properties": properties,
    }
    if required:
        parameters["required"] = required

    doc = description
    if not doc and func.__doc__:
        doc = inspect.cleandoc(func.__doc__).split("\n\n")[0].strip()

    return Tool(
        name=name or func.__name__,
        description=doc or f"Execute {func.__name__}",
        parameters=parameters,
        handler=func,
        strict=strict,
    )


__all__ = [
    "Tool",
    "ToolResult",
    "ToolRegistry",
    "tool_from_function",
    "EMPTY_PARAMETERS",
]
