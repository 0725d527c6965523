"""
Decorators for easy tool definition.

Provides the @tool decorator for converting functions to Tool instances.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, TypeVar, overload

from .base import Tool, tool_from_function

F = TypeVar("F", bound=Callable[..., Any])


@overload
def tool(func: F) -> Tool: ...


@overload
def tool(
    *,
    name: str | None = None,
    description: str | None = None,
    strict: bool = False,
) -> Callable[[F], Tool]: ...


def tool(
    func: F | None = None,
    *,
    name: str | None = None,
    description: str | None = None,
    strict: bool = False,
) -> Tool | Callable[[F], Tool]:
    """
    Decorator to convert a function (sync or async) into a Tool.

    Can be used with or without arguments:

    ```python
    @tool
    async def get_weather(city: str) -> dict:
        '''Get current weather for a city.'''
        return {"temp": 72, "unit": "F"}

    @tool(name="web_search", strict=True)
    def search(query: str, max_results: int = 5) -> list[str]:
        return [query]
    ```

    The decorator extracts:
    - Parameter types from annotations
    - Parameter descriptions from the docstring Args: section
    - Tool description from the docstring first paragraph
    """

    def decorator(fn: F) -> Tool:
        return tool_from_function(
            fn,
            name=name,
            description=description,
            strict=strict,
        )

    if func is not None:
        return decorator(func)

    return decorator


__all__ = ["tool"]
