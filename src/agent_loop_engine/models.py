"""
Model metadata and token accounting.

A ``ModelDefinition`` is handed to the transport on every invocation; the
loop itself never inspects it. ``TokenUsage`` rides on every assistant
message so callers can total usage and cost across a run.

Example:
    from agent_loop_engine.models import ModelCost, ModelDefinition

    model = ModelDefinition(
        id="gpt-4o-mini",
        provider="openai",
        cost=ModelCost(input=0.15, output=0.6),
    )
    cost = usage.calculate_cost(model.cost)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class ModelCost:
    """Pricing per million tokens."""

    input: float = 0.0
    output: float = 0.0
    cache_read: float = 0.0
    cache_write: float = 0.0


@dataclass
class CostBreakdown:
    """Dollar cost breakdown for a request."""

    input: float = 0.0
    output: float = 0.0
    cache_read: float = 0.0
    cache_write: float = 0.0
    total: float = 0.0


@dataclass
class TokenUsage:
    """Token counts for a single model invocation."""

    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_write_tokens: int = 0
    cost: CostBreakdown = field(default_factory=CostBreakdown)

    @property
    def total_tokens(self) -> int:
        return (
            self.input_tokens
            + self.output_tokens
            + self.cache_read_tokens
            + self.cache_write_tokens
        )

    def calculate_cost(self, cost: ModelCost) -> CostBreakdown:
        """Calculate dollar cost from pricing and store it on ``self.cost``."""
        input_cost = (cost.input / 1_000_000) * self.input_tokens
        output_cost = (cost.output / 1_000_000) * self.output_tokens
        cache_read_cost = (cost.cache_read / 1_000_000) * self.cache_read_tokens
        cache_write_cost = (cost.cache_write / 1_000_000) * self.cache_write_tokens
        self.cost = CostBreakdown(
            input=input_cost,
            output=output_cost,
            cache_read=cache_read_cost,
            cache_write=cache_write_cost,
            total=input_cost + output_cost + cache_read_cost + cache_write_cost,
        )
        return self.cost

    def __add__(self, other: TokenUsage) -> TokenUsage:
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            cache_read_tokens=self.cache_read_tokens + other.cache_read_tokens,
            cache_write_tokens=self.cache_write_tokens + other.cache_write_tokens,
            cost=CostBreakdown(
                input=self.cost.input + other.cost.input,
                output=self.cost.output + other.cost.output,
                cache_read=self.cost.cache_read + other.cost.cache_read,
                cache_write=self.cost.cache_write + other.cost.cache_write,
                total=self.cost.total + other.cost.total,
            ),
        )


@dataclass
class ModelDefinition:
    """
    Metadata for a model, passed verbatim to the transport.

    Attributes:
        id: Model identifier (e.g., "gpt-4o").
        provider: Provider name (e.g., "openai").
        api: API protocol spoken by the transport (e.g., "openai-chat").
        base_url: Endpoint override; ``None`` means the SDK default.
        context_window: Maximum input tokens the model accepts.
        max_output_tokens: Maximum tokens the model can generate.
        cost: Pricing per million tokens.
        reasoning: Whether the model emits reasoning content.
    """

    id: str
    provider: str = "openai"
    api: str = "openai-chat"
    base_url: str | None = None
    display_name: str = ""
    context_window: int = 128_000
    max_output_tokens: int = 4096
    cost: ModelCost = field(default_factory=ModelCost)
    reasoning: bool = False

    def __post_init__(self) -> None:
        if not self.display_name:
            self.display_name = self.id

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ModelDefinition:
        """Create a model definition from a config dictionary."""
        cost_data = data.get("cost", {}) or {}
        return cls(
            id=data["id"],
            provider=data.get("provider", "openai"),
            api=data.get("api", "openai-chat"),
            base_url=data.get("base_url"),
            display_name=data.get("display_name", ""),
            context_window=data.get("context_window", 128_000),
            max_output_tokens=data.get("max_output_tokens", 4096),
            cost=ModelCost(
                input=cost_data.get("input", 0.0),
                output=cost_data.get("output", 0.0),
                cache_read=cost_data.get("cache_read", 0.0),
                cache_write=cost_data.get("cache_write", 0.0),
            ),
            reasoning=data.get("reasoning", False),
        )
