#!/usr/bin/env python3
"""
Agent Loop Engine Demo

Demonstrates stream moderation, steering and follow-up messages against an
OpenAI-compatible endpoint.

Usage:
    # Run demo (auto-loads .env file)
    python examples/agent_demo.py

    # Or run interactive mode
    python examples/agent_demo.py --interactive

Settings come from AGENT_LOOP_MODEL, OPENAI_BASE_URL and OPENAI_API_KEY
(see AgentSettings.from_env).
"""

import asyncio
import sys
from datetime import datetime, timezone

from agent_loop_engine import (
    Agent,
    EventBus,
    FunctionTool,
    StreamTextResult,
    create_agent,
    setup_logging,
)


def current_time(utc: bool = False) -> str:
    now = datetime.now(timezone.utc) if utc else datetime.now()
    return now.isoformat(timespec="seconds")


CLOCK_TOOL = FunctionTool(
    "current_time",
    "Get the current time",
    {
        "type": "object",
        "properties": {"utc": {"type": "boolean", "description": "Return UTC time"}},
    },
    current_time,
)


def build_bus() -> EventBus:
    bus = EventBus()

    @bus.on("stream_text", source="demo")
    def no_shouting(event):
        if event.accumulated_text.isupper() and len(event.accumulated_text) > 20:
            return StreamTextResult.abort("Please answer without shouting.")
        return None

    @bus.on("tool_execution_end")
    def show_tool(event):
        status = "error" if event.is_error else "ok"
        print(f"  [tool] {event.tool_name} -> {status}")

    @bus.on("message_end")
    def show_reply(event):
        if event.message.role == "assistant" and event.message.text:
            print(f"\nAssistant: {event.message.text}")

    return bus


async def demo_basic(agent: Agent):
    """Basic usage demo."""
    print("=" * 60)
    print("Agent Loop Engine - Basic Demo")
    print("=" * 60)

    print("\nUser: What time is it?")
    await agent.prompt("What time is it?")


async def demo_follow_up(agent: Agent):
    """Queue a follow-up that runs once the current prompt is done."""
    print("\n" + "=" * 60)
    print("Follow-up Demo")
    print("=" * 60)

    agent.follow_up("Now tell me the same time in UTC.")
    print("\nUser: Give me the local time.")
    await agent.prompt("Give me the local time.")


async def run_interactive(agent: Agent):
    """Run interactive chat mode."""
    print("\nWelcome to Agent Loop Engine interactive mode! (Ctrl-D to quit)")
    while True:
        try:
            line = await asyncio.to_thread(input, "You: ")
        except EOFError:
            break
        if line.strip():
            await agent.prompt(line)


async def main():
    """Main entry point."""
    setup_logging("WARNING")
    agent = create_agent(
        events=build_bus(),
        system_prompt="You are a helpful assistant. Use tools when they help.",
        tools=[CLOCK_TOOL],
    )

    if "--interactive" in sys.argv or "-i" in sys.argv:
        await run_interactive(agent)
    else:
        await demo_basic(agent)
        await demo_follow_up(agent)
        print("\n" + "=" * 60)
        print("Demo complete! Run with --interactive for chat mode.")
        print("=" * 60)


if __name__ == "__main__":
    asyncio.run(main())
