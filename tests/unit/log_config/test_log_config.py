"""
Tests for internal logging setup.
"""

import logging

import pytest

from logship import configure_logging


class TestConfigureLogging:
    def test_sets_root_level(self) -> None:
        configure_logging("DEBUG")
        assert logging.getLogger().level == logging.DEBUG
        configure_logging("INFO")

    def test_quiets_noisy_libraries(self) -> None:
        configure_logging("DEBUG")
        assert logging.getLogger("aiohttp.client").level == logging.WARNING
        configure_logging("INFO")

    def test_rejects_unknown_level(self) -> None:
        with pytest.raises(ValueError):
            configure_logging("CHATTY")
