"""Shared pytest fixtures for agent-loop-engine tests."""

import pytest

from agent_loop_engine import AgentContext, AgentLoopConfig, ModelDefinition, default_convert_to_llm
from agent_loop_engine.models import ModelCost


@pytest.fixture
def mock_model() -> ModelDefinition:
    """A model definition no test ever sends to a real endpoint."""
    return ModelDefinition(
        id="mock",
        provider="openai",
        base_url="https://example.invalid",
        context_window=8192,
        max_output_tokens=2048,
        cost=ModelCost(input=1.0, output=2.0),
    )


@pytest.fixture
def empty_context() -> AgentContext:
    return AgentContext(system_prompt="", messages=[], tools=[])


@pytest.fixture
def loop_config(mock_model: ModelDefinition) -> AgentLoopConfig:
    """Loop config using the identity converter (recognized roles only)."""
    return AgentLoopConfig(model=mock_model, convert_to_llm=default_convert_to_llm)
