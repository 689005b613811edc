"""Tests for configuration models."""

from pathlib import Path
from textwrap import dedent

import pytest

from agent_loop_engine.config import AgentLoopConfig, AgentSettings, ConfigError
from agent_loop_engine.messages import default_convert_to_llm
from agent_loop_engine.models import ModelDefinition

ENV_VARS = (
    "AGENT_LOOP_MODEL",
    "OPENAI_BASE_URL",
    "OPENAI_API_KEY",
    "AGENT_LOOP_MAX_STREAM_ABORTS",
    "AGENT_LOOP_LOG_LEVEL",
)


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestAgentLoopConfig:
    """Tests for AgentLoopConfig."""

    def test_defaults(self) -> None:
        config = AgentLoopConfig(model=ModelDefinition(id="m"))

        assert config.convert_to_llm is default_convert_to_llm
        assert config.transform_context is None
        assert config.get_steering_messages is None
        assert config.get_follow_up_messages is None
        assert config.on_stream_text is None
        assert config.max_stream_aborts is None
        assert config.stream_options == {}

    def test_negative_abort_limit_rejected(self) -> None:
        with pytest.raises(ConfigError, match="max_stream_aborts"):
            AgentLoopConfig(model=ModelDefinition(id="m"), max_stream_aborts=-1)

    def test_zero_abort_limit_allowed(self) -> None:
        config = AgentLoopConfig(model=ModelDefinition(id="m"), max_stream_aborts=0)
        assert config.max_stream_aborts == 0


class TestAgentSettings:
    """Tests for AgentSettings."""

    def test_default_values(self) -> None:
        """Should have sensible defaults."""
        settings = AgentSettings()

        assert settings.model == "gpt-4o-mini"
        assert settings.provider == "openai"
        assert settings.base_url is None
        assert settings.api_key is None
        assert settings.temperature is None
        assert settings.max_tokens is None
        assert settings.max_stream_aborts is None
        assert settings.steering_mode == "one-at-a-time"
        assert settings.follow_up_mode == "one-at-a-time"
        assert settings.log_level == "WARNING"

    def test_from_dict_basic(self) -> None:
        settings = AgentSettings.from_dict(
            {"model": "gpt-4o", "temperature": 0.3, "follow_up_mode": "all"}
        )

        assert settings.model == "gpt-4o"
        assert settings.temperature == 0.3
        assert settings.follow_up_mode == "all"

    def test_from_dict_rejects_unknown_keys(self) -> None:
        with pytest.raises(ConfigError, match="Unknown settings: colour"):
            AgentSettings.from_dict({"colour": "blue"})

    def test_invalid_queue_mode(self) -> None:
        with pytest.raises(ConfigError, match="steering_mode"):
            AgentSettings(steering_mode="sometimes")  # type: ignore[arg-type]

    def test_negative_abort_limit(self) -> None:
        with pytest.raises(ConfigError):
            AgentSettings(max_stream_aborts=-2)

    def test_from_yaml(self, tmp_path: Path) -> None:
        """Should load settings from a YAML file."""
        path = tmp_path / "agent.yaml"
        path.write_text(
            dedent(
                """
                model: gpt-4o
                base_url: http://localhost:8080/v1
                max_tokens: 512
                max_stream_aborts: 2
                steering_mode: all
                log_level: DEBUG
                """
            )
        )

        settings = AgentSettings.from_yaml(path)

        assert settings.model == "gpt-4o"
        assert settings.base_url == "http://localhost:8080/v1"
        assert settings.max_tokens == 512
        assert settings.max_stream_aborts == 2
        assert settings.steering_mode == "all"
        assert settings.log_level == "DEBUG"

    def test_from_yaml_string_empty(self) -> None:
        assert AgentSettings.from_yaml_string("") == AgentSettings()

    def test_from_yaml_string_invalid_mode(self) -> None:
        with pytest.raises(ConfigError):
            AgentSettings.from_yaml_string("follow_up_mode: never\n")

    def test_from_env(self, clean_env: pytest.MonkeyPatch) -> None:
        clean_env.setenv("AGENT_LOOP_MODEL", "gpt-4.1")
        clean_env.setenv("OPENAI_BASE_URL", "http://proxy/v1")
        clean_env.setenv("OPENAI_API_KEY", "sk-test")
        clean_env.setenv("AGENT_LOOP_MAX_STREAM_ABORTS", "4")
        clean_env.setenv("AGENT_LOOP_LOG_LEVEL", "INFO")

        settings = AgentSettings.from_env(dotenv=False)

        assert settings.model == "gpt-4.1"
        assert settings.base_url == "http://proxy/v1"
        assert settings.api_key == "sk-test"
        assert settings.max_stream_aborts == 4
        assert settings.log_level == "INFO"

    def test_from_env_defaults(self, clean_env: pytest.MonkeyPatch) -> None:
        settings = AgentSettings.from_env(dotenv=False)

        assert settings.model == "gpt-4o-mini"
        assert settings.api_key is None
        assert settings.max_stream_aborts is None

    def test_from_env_bad_integer(self, clean_env: pytest.MonkeyPatch) -> None:
        clean_env.setenv("AGENT_LOOP_MAX_STREAM_ABORTS", "many")

        with pytest.raises(ConfigError, match="must be an integer"):
            AgentSettings.from_env(dotenv=False)

    def test_to_dict_round_trips(self) -> None:
        settings = AgentSettings(model="gpt-4o", temperature=0.1)
        assert AgentSettings.from_dict(settings.to_dict()) == settings

    def test_stream_options_omit_unset(self) -> None:
        assert AgentSettings().stream_options() == {}
        assert AgentSettings(temperature=0.0, max_tokens=100).stream_options() == {
            "temperature": 0.0,
            "max_tokens": 100,
        }

    def test_loop_config(self) -> None:
        settings = AgentSettings(
            model="gpt-4o",
            base_url="http://local/v1",
            api_key="sk-x",
            max_stream_aborts=1,
            temperature=0.5,
        )

        def moderator(event: object) -> None:
            return None

        config = settings.loop_config(on_stream_text=moderator)

        assert config.model.id == "gpt-4o"
        assert config.model.base_url == "http://local/v1"
        assert config.api_key == "sk-x"
        assert config.max_stream_aborts == 1
        assert config.stream_options == {"temperature": 0.5}
        assert config.on_stream_text is moderator

    def test_loop_config_override(self) -> None:
        config = AgentSettings(max_stream_aborts=5).loop_config(max_stream_aborts=None)
        assert config.max_stream_aborts is None
