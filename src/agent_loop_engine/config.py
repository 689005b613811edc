"""
Configuration for the agent loop.

Two layers:

- ``AgentLoopConfig`` is the per-run configuration the loop consumes: the
  model plus the caller-supplied hooks (strategy functions) it calls.
- ``AgentSettings`` holds the plain values an application usually keeps in a
  file or the environment, and can build an ``AgentLoopConfig``.

Example YAML:
    model: gpt-4o-mini
    base_url: https://api.openai.com/v1
    temperature: 0.2
    max_tokens: 2048
    max_stream_aborts: 3
    steering_mode: one-at-a-time
    follow_up_mode: all
    log_level: INFO
"""

from __future__ import annotations

import os
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal, Union

import yaml
from dotenv import load_dotenv

from agent_loop_engine.messages import AgentMessage, LlmMessage, default_convert_to_llm
from agent_loop_engine.models import ModelDefinition

if TYPE_CHECKING:
    from agent_loop_engine.cancellation import CancellationToken
    from agent_loop_engine.events import StreamTextHandler


class ConfigError(ValueError):
    """Invalid configuration or an invalid request to start a run."""


QueueMode = Literal["one-at-a-time", "all"]
QUEUE_MODES: tuple[str, ...] = ("one-at-a-time", "all")

ConvertToLlm = Callable[
    [list[AgentMessage]], Union[list[LlmMessage], Awaitable[list[LlmMessage]]]
]
TransformContext = Callable[
    [list[AgentMessage], "CancellationToken | None"], Awaitable[list[AgentMessage]]
]
MessageSource = Callable[[], Awaitable[Sequence[AgentMessage]]]
ApiKeyResolver = Callable[[str], Awaitable[Union[str, None]]]


@dataclass
class AgentLoopConfig:
    """
    Per-run configuration for :func:`agent_loop` and :func:`agent_loop_continue`.

    Attributes:
        model: Passed verbatim to the transport.
        convert_to_llm: Narrows the working messages to what the transport
            accepts. Sync or async. Defaults to keeping recognized roles.
        transform_context: Async ``(messages, signal) -> messages`` applied
            before ``convert_to_llm`` on every generation. Its result becomes
            the working context for the rest of the run.
        get_steering_messages: Async, polled before each tool call and
            between turns.
        get_follow_up_messages: Async, polled when the run would otherwise
            finish; a non-empty result starts another turn.
        on_stream_text: Synchronous stream moderator.
        get_api_key: Async ``(provider) -> key`` resolved per transport call;
            overrides ``api_key`` when it returns a value.
        api_key: Static API key forwarded to the transport.
        max_stream_aborts: Moderator aborts honored per run. ``None`` means
            unbounded.
        stream_options: Extra transport options (temperature, max_tokens, ...).
    """

    model: ModelDefinition
    convert_to_llm: ConvertToLlm = default_convert_to_llm
    transform_context: TransformContext | None = None
    get_steering_messages: MessageSource | None = None
    get_follow_up_messages: MessageSource | None = None
    on_stream_text: StreamTextHandler | None = None
    get_api_key: ApiKeyResolver | None = None
    api_key: str | None = None
    max_stream_aborts: int | None = None
    stream_options: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.max_stream_aborts is not None and self.max_stream_aborts < 0:
            raise ConfigError("max_stream_aborts must be >= 0")


def _env_int(name: str) -> int | None:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None


@dataclass
class AgentSettings:
    """Plain settings for building a loop configuration and an ``Agent``."""

    model: str = "gpt-4o-mini"
    provider: str = "openai"
    base_url: str | None = None
    api_key: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    max_stream_aborts: int | None = None
    steering_mode: QueueMode = "one-at-a-time"
    follow_up_mode: QueueMode = "one-at-a-time"
    log_level: str = "WARNING"

    def __post_init__(self) -> None:
        for name in ("steering_mode", "follow_up_mode"):
            if getattr(self, name) not in QUEUE_MODES:
                raise ConfigError(
                    f"{name} must be one of {', '.join(QUEUE_MODES)}; got {getattr(self, name)!r}"
                )
        if self.max_stream_aborts is not None and self.max_stream_aborts < 0:
            raise ConfigError("max_stream_aborts must be >= 0")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AgentSettings:
        """Create settings from a dictionary. Unknown keys are rejected."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown settings: {', '.join(unknown)}")
        return cls(**data)

    @classmethod
    def from_yaml(cls, path: Path) -> AgentSettings:
        """Load settings from a YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f)
        return cls.from_dict(data or {})

    @classmethod
    def from_yaml_string(cls, content: str) -> AgentSettings:
        """Load settings from a YAML string."""
        data = yaml.safe_load(content)
        return cls.from_dict(data or {})

    @classmethod
    def from_env(cls, dotenv: bool = True) -> AgentSettings:
        """
        Load settings from the environment.

        Reads ``AGENT_LOOP_MODEL``, ``OPENAI_BASE_URL``, ``OPENAI_API_KEY``,
        ``AGENT_LOOP_MAX_STREAM_ABORTS`` and ``AGENT_LOOP_LOG_LEVEL``. When
        ``dotenv`` is true a ``.env`` file is loaded first (existing
        variables win).
        """
        if dotenv:
            load_dotenv()
        defaults = cls()
        return cls(
            model=os.environ.get("AGENT_LOOP_MODEL", defaults.model),
            base_url=os.environ.get("OPENAI_BASE_URL") or None,
            api_key=os.environ.get("OPENAI_API_KEY") or None,
            max_stream_aborts=_env_int("AGENT_LOOP_MAX_STREAM_ABORTS"),
            log_level=os.environ.get("AGENT_LOOP_LOG_LEVEL", defaults.log_level),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert settings to a dictionary."""
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def model_definition(self) -> ModelDefinition:
        return ModelDefinition(id=self.model, provider=self.provider, base_url=self.base_url)

    def stream_options(self) -> dict[str, Any]:
        """Transport options derived from these settings (unset values omitted)."""
        options: dict[str, Any] = {}
        if self.temperature is not None:
            options["temperature"] = self.temperature
        if self.max_tokens is not None:
            options["max_tokens"] = self.max_tokens
        return options

    def loop_config(self, **overrides: Any) -> AgentLoopConfig:
        """Build an ``AgentLoopConfig``; keyword arguments set hooks or override values."""
        values: dict[str, Any] = {
            "model": self.model_definition(),
            "api_key": self.api_key,
            "max_stream_aborts": self.max_stream_aborts,
            "stream_options": self.stream_options(),
        }
        values.update(overrides)
        return AgentLoopConfig(**values)
