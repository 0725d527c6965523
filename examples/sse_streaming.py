#!/usr/bin/env python3
"""
Example: Server-Sent Events (SSE) Streaming

Demonstrates:
1. Frame formatting with format_sse_event
2. Streaming a whole agent run as SSE frames through the Runtime facade
3. Parsing the frames back on the client side
4. Serving the frames from an aiohttp endpoint
"""

import asyncio

from aiohttp import web

from copilot_runtime import Runtime, Settings, format_sse_event, parse_sse_frames, sse_headers, tool


@tool
async def lookup_order(order_id: str) -> dict:
    """Look up an order by id."""
    return {"order_id": order_id, "status": "shipped", "eta_days": 2}


def build_runtime() -> Runtime:
    return Runtime.from_settings(Settings.from_env(), tools=[lookup_order])


async def sse_endpoint(request: web.Request) -> web.StreamResponse:
    """aiohttp handler streaming one agent run per request."""
    runtime: Runtime = request.app["runtime"]
    body = await request.json()

    response = web.StreamResponse(headers=sse_headers())
    await response.prepare(request)
    async for frame in runtime.stream_sse(body["messages"]):
        await response.write(frame.encode("utf-8"))
    await response.write_eof()
    return response


def make_app() -> web.Application:
    app = web.Application()
    app["runtime"] = build_runtime()
    app.router.add_post("/chat", sse_endpoint)

    async def close_runtime(app: web.Application):
        await app["runtime"].close()

    app.on_cleanup.append(close_runtime)
    return app


async def main():
    print("=" * 60)
    print("SSE STREAMING EXAMPLE")
    print("=" * 60)

    # === Example 1: Frame format ===
    print("\nSSE event format: 'event: <type>\\ndata: <payload>\\n\\n'")
    print(repr(format_sse_event("text_delta", {"text": "Hello"})))
    print(repr(format_sse_event("note", "line one\nline two")))

    # === Example 2: A full run as frames ===
    print("\n" + "=" * 40)
    print("Streaming an agent run")
    print("=" * 40)

    async with build_runtime() as runtime:
        frames = []
        async for frame in runtime.stream_sse("Where is order A-1001?"):
            frames.append(frame)
            print(frame, end="")

    # === Example 3: Client side parsing ===
    print("\n" + "=" * 40)
    print("Parsed frames")
    print("=" * 40)
    for name, data in parse_sse_frames("".join(frames)):
        print(f"  {name}: {data}")

    print("\nTo serve over HTTP: web.run_app(make_app(), port=8080)")


if __name__ == "__main__":
    asyncio.run(main())
