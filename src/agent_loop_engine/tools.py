"""Tool contract, result type and registry."""
from __future__ import annotations

import inspect
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from agent_loop_engine.cancellation import CancellationToken
from agent_loop_engine.config import ConfigError
from agent_loop_engine.messages import ImageContent, TextContent


@dataclass
class ToolResult:
    """Outcome of one tool execution."""

    content: list[TextContent | ImageContent] = field(default_factory=list)
    details: Any = None

    @classmethod
    def text(cls, text: str, details: Any = None) -> ToolResult:
        return cls(content=[TextContent(text=text)], details=details)

    @property
    def text_content(self) -> str:
        return "".join(b.text for b in self.content if isinstance(b, TextContent))


ToolUpdateCallback = Callable[[ToolResult], Any]


def coerce_tool_result(value: Any) -> ToolResult:
    """Accept a ToolResult, a plain string or ``None`` from a tool."""
    if isinstance(value, ToolResult):
        return value
    if value is None:
        return ToolResult()
    if isinstance(value, str):
        return ToolResult.text(value)
    raise TypeError(f"Tool returned {type(value).__name__}; expected ToolResult or str")


class AgentTool(ABC):
    """Base class for tools the loop can call."""

    label: str = ""

    @property
    @abstractmethod
    def name(self) -> str: ...

    @property
    @abstractmethod
    def description(self) -> str: ...

    @property
    @abstractmethod
    def parameters(self) -> dict[str, Any]: ...

    @abstractmethod
    async def execute(
        self,
        tool_call_id: str,
        params: dict[str, Any],
        signal: CancellationToken | None = None,
        on_update: ToolUpdateCallback | None = None,
    ) -> ToolResult | str: ...

    def definition(self) -> dict[str, Any]:
        """OpenAI function calling definition."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


class FunctionTool(AgentTool):
    """
    Wrap a plain callable as a tool.

    The callable receives the parsed arguments as keyword arguments and may
    be sync or async. It may declare ``signal`` and ``on_update`` keyword
    parameters to receive the cancellation token and progress callback.

    Example:
        async def add(a: int, b: int) -> str:
            return str(a + b)

        tool = FunctionTool(
            "add",
            "Add two integers",
            {"type": "object", "properties": {"a": {"type": "integer"}, "b": {"type": "integer"}}},
            add,
        )
    """

    def __init__(
        self,
        name: str,
        description: str,
        parameters: dict[str, Any],
        handler: Callable[..., ToolResult | str | Awaitable[ToolResult | str]],
        label: str = "",
    ) -> None:
        self._name = name
        self._description = description
        self._parameters = parameters
        self._handler = handler
        self.label = label or name
        accepted = inspect.signature(handler).parameters
        self._wants_signal = "signal" in accepted
        self._wants_update = "on_update" in accepted

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return self._description

    @property
    def parameters(self) -> dict[str, Any]:
        return self._parameters

    async def execute(
        self,
        tool_call_id: str,
        params: dict[str, Any],
        signal: CancellationToken | None = None,
        on_update: ToolUpdateCallback | None = None,
    ) -> ToolResult:
        kwargs = dict(params)
        if self._wants_signal:
            kwargs["signal"] = signal
        if self._wants_update:
            kwargs["on_update"] = on_update
        result = self._handler(**kwargs)
        if inspect.isawaitable(result):
            result = await result
        return coerce_tool_result(result)


class ToolRegistry:
    """Registry of tools keyed by unique name."""

    def __init__(self, tools: Iterable[AgentTool] = ()) -> None:
        self._tools: dict[str, AgentTool] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: AgentTool) -> None:
        if tool.name in self._tools:
            raise ConfigError(f"Duplicate tool name: {tool.name}")
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> bool:
        return self._tools.pop(name, None) is not None

    def get(self, name: str) -> AgentTool | None:
        return self._tools.get(name)

    def list_tools(self) -> list[AgentTool]:
        return list(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def get_definitions(self) -> list[dict[str, Any]]:
        """Get tool definitions in OpenAI function calling format."""
        return [t.definition() for t in self._tools.values()]
