#!/usr/bin/env python3
"""
Example: Agent Tool Calling

Runs the agent loop with two tools. ``get_weather`` runs automatically;
``delete_file`` needs an operator's approval, which this script grants from
the terminal as soon as the execution starts waiting.
"""
import asyncio

from copilot_runtime import (
    ApprovalChannel,
    ApprovalPolicy,
    LoopConfig,
    OpenAIProvider,
    StreamEvent,
    StreamEventType,
    run_agent_loop,
    tool,
)


@tool
async def get_weather(location: str, unit: str = "celsius") -> dict:
    """Get current weather for a location.

    Args:
        location: City name
        unit: celsius or fahrenheit
    """
    print(f"  🔧 Tool called: get_weather({location}, {unit})")
    return {"location": location, "temperature": 22, "unit": unit, "condition": "Sunny"}


@tool
def delete_file(path: str) -> str:
    """Delete a file from the scratch directory."""
    print(f"  🔧 Tool called: delete_file({path})")
    return f"deleted {path}"


async def main():
    provider = OpenAIProvider()
    approvals = ApprovalChannel()

    async def on_event(event: StreamEvent):
        if event.type is StreamEventType.TEXT_DELTA:
            print(event.data, end="", flush=True)
        elif event.type is StreamEventType.TOOL_EXECUTION and event.data["status"] == "awaiting_approval":
            answer = await asyncio.to_thread(input, f"\nApprove {event.data['name']}({event.data['args']})? [y/N] ")
            if answer.strip().lower() == "y":
                approvals.approve(event.data["id"])
            else:
                approvals.reject(event.data["id"], "declined at the terminal")

    query = "What's the weather in Tokyo? Also delete /tmp/report.txt."
    print(f"\n👤 User: {query}\n")

    result = await run_agent_loop(
        query,
        [get_weather, delete_file],
        provider,
        approval_policy=ApprovalPolicy.manual("delete_file"),
        config=LoopConfig(max_iterations=5),
        approvals=approvals,
        sink=on_event,
    )

    print(f"\n\n💬 Stop reason: {result.stop_reason.value} after {result.iteration} iteration(s)")
    if result.usage:
        print(f"   Tokens: {result.usage.total_tokens}")

    await provider.close()


if __name__ == "__main__":
    asyncio.run(main())
