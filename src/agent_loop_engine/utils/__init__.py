"""Helpers shared by transports."""

from agent_loop_engine.utils.json_parse import parse_streaming_json, parse_tool_arguments

__all__ = ["parse_streaming_json", "parse_tool_arguments"]
