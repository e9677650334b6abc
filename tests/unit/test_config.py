"""
Unit tests for settings and logging configuration.
"""

import logging

import pytest
from pydantic import ValidationError

from entitymodel.config import Settings, configure_logging


class TestSettings:
    """Tests for Settings defaults and validation."""

    def test_defaults(self):
        """Test default naming conventions and switches."""
        config = Settings(_env_file=None)

        assert config.key_property_name == "Id"
        assert config.shadow_name_ordinal_start == 1
        assert config.discover_keys
        assert config.discover_relationships
        assert config.log_level == "INFO"

    def test_environment_prefix(self, monkeypatch):
        """Test ENTITYMODEL_* variables are read."""
        monkeypatch.setenv("ENTITYMODEL_KEY_PROPERTY_NAME", "Key")
        monkeypatch.setenv("ENTITYMODEL_DISCOVER_RELATIONSHIPS", "false")

        config = Settings(_env_file=None)

        assert config.key_property_name == "Key"
        assert not config.discover_relationships

    def test_log_level_normalized(self):
        """Test log levels are upper-cased."""
        assert Settings(_env_file=None, log_level="debug").log_level == "DEBUG"

    def test_unknown_log_level(self):
        """Test unknown log levels are rejected."""
        with pytest.raises(ValidationError, match="Unknown log level"):
            Settings(_env_file=None, log_level="verbose")

    def test_key_property_name_must_be_identifier(self):
        """Test the key suffix must be usable in property names."""
        with pytest.raises(ValidationError, match="valid identifier"):
            Settings(_env_file=None, key_property_name="Primary Key")

    def test_negative_ordinal_rejected(self):
        """Test shadow name ordinals start at zero or above."""
        with pytest.raises(ValidationError):
            Settings(_env_file=None, shadow_name_ordinal_start=-1)


class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_sets_root_level(self, monkeypatch):
        """Test the requested level reaches basicConfig."""
        calls = {}
        monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: calls.update(kwargs))

        configure_logging("warning")

        assert calls["level"] == logging.WARNING
        assert "%(name)s" in calls["format"]
