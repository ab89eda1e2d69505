"""Tests for utility functions."""

import pytest

from cloud_connector.common.utils import (
    MAX_PORT,
    MIN_PORT,
    is_port_open,
    mask_sensitive_data,
    validate_port,
)


class TestValidatePort:
    """Test port validation function."""

    def test_valid_ports(self):
        """Test validation of valid ports."""
        validate_port(1, "Test port")
        validate_port(22, "SSH port")
        validate_port(3389, "RDP port")
        validate_port(65535, "Max port")

    def test_invalid_ports(self):
        """Test validation of invalid ports."""
        with pytest.raises(ValueError, match="Test port must be between 1 and 65535"):
            validate_port(0, "Test port")

        with pytest.raises(ValueError, match="Test port must be between 1 and 65535"):
            validate_port(65536, "Test port")

        with pytest.raises(ValueError, match="Test port must be between 1 and 65535"):
            validate_port(-1, "Test port")

    def test_non_integer_ports(self):
        """Test validation of non-integer ports."""
        with pytest.raises(ValueError, match="Test port must be between 1 and 65535"):
            validate_port("80", "Test port")  # type: ignore

        with pytest.raises(ValueError, match="Test port must be between 1 and 65535"):
            validate_port(80.5, "Test port")  # type: ignore

    def test_bool_is_not_a_port(self):
        """True is an int subclass but never a port."""
        with pytest.raises(ValueError):
            validate_port(True, "Test port")  # type: ignore

    def test_default_port_name(self):
        with pytest.raises(ValueError, match="^Port must be between"):
            validate_port(0)


class TestIsPortOpen:
    """Test local TCP probing."""

    def test_open_port(self, listening_port):
        assert is_port_open(listening_port, timeout=1.0) is True

    def test_closed_port(self, closed_port):
        assert is_port_open(closed_port, timeout=0.5) is False


class TestMaskSensitiveData:
    """Test sensitive data masking function."""

    def test_mask_normal_string(self):
        """Test masking normal strings."""
        assert mask_sensitive_data("secret123") == "*****t123"
        assert mask_sensitive_data("abcdef1234567890", show_chars=8) == "********34567890"

    def test_mask_short_string(self):
        """Test masking strings shorter than show_chars."""
        assert mask_sensitive_data("abc") == "***"
        assert mask_sensitive_data("abcd") == "****"

    def test_mask_empty_or_none(self):
        """Test masking empty or None values."""
        assert mask_sensitive_data("") == "<None>"
        assert mask_sensitive_data(None) == "<None>"

    def test_custom_mask_char(self):
        assert mask_sensitive_data("secret123", mask_char="#") == "#####t123"


class TestConstants:
    def test_port_range(self):
        assert MIN_PORT == 1
        assert MAX_PORT == 65535
