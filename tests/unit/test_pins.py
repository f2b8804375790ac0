"""
Unit tests for join PIN utilities.
"""

import pytest

from workshop.utils.pins import PIN_ALPHABET, generate_pin, is_valid_pin, normalize_pin


class TestPins:
    """Test PIN generation and normalization."""

    def test_alphabet_excludes_ambiguous_glyphs(self):
        """Test the alphabet has 32 symbols and no 0, O, 1 or I."""
        assert len(PIN_ALPHABET) == 32
        assert len(set(PIN_ALPHABET)) == 32
        for glyph in "0O1I":
            assert glyph not in PIN_ALPHABET

    def test_generate_default_length(self):
        """Test generated PINs are six symbols from the alphabet."""
        for _ in range(200):
            pin = generate_pin()
            assert len(pin) == 6
            assert is_valid_pin(pin)

    def test_generate_custom_length(self):
        """Test a custom length is honoured."""
        assert len(generate_pin(8)) == 8

    def test_generate_rejects_non_positive_length(self):
        """Test zero length is refused."""
        with pytest.raises(ValueError):
            generate_pin(0)

    def test_normalize_pin(self):
        """Test normalization trims and upper-cases."""
        assert normalize_pin("  ab3x9k ") == "AB3X9K"
        assert normalize_pin(None) == ""

    def test_is_valid_pin(self):
        """Test validation of length and alphabet."""
        assert is_valid_pin("AB3X9K")
        assert not is_valid_pin("ab3x9k")
        assert not is_valid_pin("AB3X9")
        assert not is_valid_pin("AB3X9O")
