"""
Model transports.

A transport is any ``StreamFn``; the OpenAI-compatible one is the default
used when ``agent_loop`` is not given a ``stream_fn``.
"""

from agent_loop_engine.adapters.openai import build_openai_messages, create_client, stream_openai

__all__ = ["build_openai_messages", "create_client", "stream_openai"]
