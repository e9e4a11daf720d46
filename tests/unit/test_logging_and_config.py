"""
Unit tests for the library logger, key redaction and environment settings.
"""

import logging

import pytest
from pydantic import ValidationError as PydanticValidationError

from propeas import configure_logging, get_settings
from propeas._logging import logger, redact_key
from propeas.config import Settings


@pytest.fixture
def restore_logger():
    handlers, level = list(logger.handlers), logger.level
    yield
    logger.handlers[:] = handlers
    logger.setLevel(level)


@pytest.mark.unit
class TestLogger:
    """Test the library logger setup."""

    def test_library_logger_has_null_handler(self) -> None:
        assert logger.name == "propeas"
        assert any(isinstance(h, logging.NullHandler) for h in logger.handlers)

    def test_configure_logging_adds_one_stream_handler(self, restore_logger) -> None:
        configure_logging(logging.DEBUG)
        configure_logging("INFO")

        streams = [
            h
            for h in logger.handlers
            if isinstance(h, logging.StreamHandler) and not isinstance(h, logging.NullHandler)
        ]
        assert len(streams) == 1
        assert logger.level == logging.INFO


@pytest.mark.unit
class TestRedactKey:
    """Test hashing of keys before they reach log records."""

    def test_none(self) -> None:
        assert redact_key(None) == "<none>"

    def test_scalar_is_hashed(self) -> None:
        redacted = redact_key("jane@doe.com")
        assert "jane" not in redacted
        assert len(redacted) == 8

    def test_same_value_same_hash(self) -> None:
        assert redact_key("uid-1") == redact_key("uid-1")
        assert redact_key("uid-1") != redact_key("uid-2")

    def test_dict_keeps_names_hides_values(self) -> None:
        redacted = redact_key({"id": "c1", "email": "jane@doe.com"})
        assert "'id'" in redacted
        assert "'email'" in redacted
        assert "jane@doe.com" not in redacted


@pytest.mark.unit
class TestSettings:
    """Test environment-driven configuration."""

    def test_defaults(self) -> None:
        settings = get_settings()
        assert settings.aws_region == "ap-south-1"
        assert settings.table_prefix == ""
        assert settings.search_debounce_seconds == 0.3
        assert settings.default_page_size == 10
        assert settings.page_size_options == (5, 10, 15, 20)

    def test_environment_overrides(self, monkeypatch) -> None:
        monkeypatch.setenv("PROPEAS_AWS_REGION", "eu-west-1")
        monkeypatch.setenv("PROPEAS_STORAGE_BUCKET", "propeas-media")
        monkeypatch.setenv("PROPEAS_PAGE_SIZE_OPTIONS", "[10, 25]")
        get_settings.cache_clear()

        settings = get_settings()

        assert settings.aws_region == "eu-west-1"
        assert settings.storage_bucket == "propeas-media"
        assert settings.page_size_options == (10, 25)

    def test_settings_are_cached(self) -> None:
        assert get_settings() is get_settings()

    def test_invalid_values_are_rejected(self) -> None:
        with pytest.raises(PydanticValidationError):
            Settings(default_page_size=0)
