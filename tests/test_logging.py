"""Tests for the package logger hierarchy."""

from __future__ import annotations

import io
import logging

import pytest

from agent_loop_engine.logging import get_logger, set_level, setup_logging


@pytest.fixture
def package_logger():
    root = logging.getLogger("agent_loop_engine")
    level, handlers = root.level, list(root.handlers)
    yield root
    root.setLevel(level)
    root.handlers[:] = handlers


class TestLogging:
    def test_get_logger_is_child_of_package(self) -> None:
        assert get_logger("loop").name == "agent_loop_engine.loop"
        assert get_logger("agent_loop_engine.agent").name == "agent_loop_engine.agent"

    def test_setup_logging_writes_to_stream(self, package_logger) -> None:
        buffer = io.StringIO()
        setup_logging("DEBUG", format="%(name)s %(message)s", stream=buffer)

        get_logger("loop").debug("turn started")

        assert buffer.getvalue().strip() == "agent_loop_engine.loop turn started"
        assert len(package_logger.handlers) == 1

    def test_set_level_accepts_names_and_ints(self, package_logger) -> None:
        set_level("error")
        assert package_logger.level == logging.ERROR

        set_level(logging.DEBUG)
        assert package_logger.level == logging.DEBUG
