"""
Shared pytest fixtures for copilot-runtime tests.
"""

from collections.abc import Sequence

import pytest

from tests._testkit import (
    CallRecorder,
    ScriptedProvider,
    ScriptItem,
    make_delete_tool,
    make_weather_tool,
)


@pytest.fixture
def recorder():
    return CallRecorder()


@pytest.fixture
def weather_tool(recorder):
    return make_weather_tool(recorder)


@pytest.fixture
def delete_tool(recorder):
    return make_delete_tool(recorder)


@pytest.fixture
def scripted_provider():
    """Factory fixture for scripted providers."""

    def _factory(*turns: Sequence[ScriptItem]) -> ScriptedProvider:
        return ScriptedProvider(turns)

    return _factory


@pytest.fixture
def event_log():
    """A list usable directly as a synchronous event sink."""
    return []
