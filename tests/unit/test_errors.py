"""
Unit tests for error message templates.
"""

import pytest

from entitymodel.errors import (
    ERROR_MESSAGES,
    ModelArgumentError,
    ModelError,
    ModelShapeError,
    format_error,
)


class TestFormatError:
    """Tests for format_error."""

    def test_renders_template(self):
        """Test placeholders are filled from keyword arguments."""
        message = format_error("unknown_entity_type", name="Customer")

        assert message == "The entity type 'Customer' was not found in the model."

    @pytest.mark.parametrize("message_key", ["key_in_use", "foreign_key_count_mismatch", "key_not_on_principal"])
    def test_templates_with_key_placeholder(self, message_key):
        """Test templates that take a 'key' value render like any other."""
        values = {"key": "Customer{Id}", "entity": "Customer", "count": 1, "properties": ["A", "B"]}

        message = format_error(message_key, **values)

        assert "Customer{Id}" in message

    def test_every_template_is_a_string(self):
        """Test the template table only holds strings."""
        assert all(isinstance(template, str) for template in ERROR_MESSAGES.values())


class TestHierarchy:
    """Tests for the exception hierarchy."""

    def test_argument_error_is_value_error(self):
        """Test argument errors can be caught as ValueError."""
        assert issubclass(ModelArgumentError, ValueError)
        assert issubclass(ModelArgumentError, ModelError)

    def test_shape_error_is_model_error(self):
        assert issubclass(ModelShapeError, ModelError)
