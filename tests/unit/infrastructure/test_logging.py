"""Unit tests for logging configuration."""

from __future__ import annotations

import structlog

from deployguard.infrastructure.observability.logging import setup_logging


class TestLogging:
    def test_setup_logging_info(self) -> None:
        setup_logging("INFO")  # Should not raise

    def test_setup_logging_debug(self) -> None:
        setup_logging("DEBUG")  # Should not raise

    def test_console_renderer(self) -> None:
        setup_logging("WARNING", json_output=False)
        structlog.get_logger("test").warning("console_output_works")

    def test_unknown_level_falls_back(self) -> None:
        setup_logging("CHATTY")  # Should not raise
