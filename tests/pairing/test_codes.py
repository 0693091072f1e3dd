"""Tests for pairing code generation."""

import random
from collections import Counter

import pytest

from onetouch.errors import ValidationError
from onetouch.pairing.codes import (
    CODE_ALPHABET,
    CODE_LENGTH,
    CodeGenerator,
    normalize_code,
)


class TestCodeGenerator:
    """Tests for CodeGenerator."""

    def test_alphabet_is_36_symbols(self):
        """Alphabet is A-Z plus 0-9."""
        assert len(CODE_ALPHABET) == 36
        assert set(CODE_ALPHABET) == set("ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789")

    def test_codes_have_fixed_length_and_alphabet(self):
        """Every code is 6 characters from the alphabet."""
        generator = CodeGenerator()
        for _ in range(500):
            code = generator.generate()
            assert len(code) == CODE_LENGTH == 6
            assert all(c in CODE_ALPHABET for c in code)

    def test_codes_are_upper_case(self):
        """Generated codes survive normalization unchanged."""
        generator = CodeGenerator()
        for _ in range(50):
            code = generator.generate()
            assert normalize_code(code) == code

    def test_seeded_rng_is_deterministic(self):
        """Injected seeded source yields a reproducible sequence."""
        a = CodeGenerator(rng=random.Random(42))
        b = CodeGenerator(rng=random.Random(42))
        assert [a.generate() for _ in range(5)] == [b.generate() for _ in range(5)]

    def test_default_source_does_not_repeat(self):
        """Default generator produces distinct codes across many draws."""
        generator = CodeGenerator()
        codes = {generator.generate() for _ in range(1000)}
        # 1000 draws from 2.1e9 codes; a duplicate is vanishingly unlikely.
        assert len(codes) == 1000

    def test_distribution_covers_alphabet(self):
        """Every symbol appears and none dominates."""
        generator = CodeGenerator(rng=random.Random(7))
        counts = Counter("".join(generator.generate() for _ in range(6000)))

        assert set(counts) == set(CODE_ALPHABET)
        expected = 36000 / 36
        for symbol, count in counts.items():
            assert 0.8 * expected < count < 1.2 * expected, symbol

    def test_rejects_invalid_parameters(self):
        """Zero length or empty alphabet is refused."""
        with pytest.raises(ValueError):
            CodeGenerator(length=0)
        with pytest.raises(ValueError):
            CodeGenerator(alphabet="")


class TestNormalizeCode:
    """Tests for normalize_code."""

    def test_upper_cases_and_strips(self):
        """Lower case and whitespace are normalized."""
        assert normalize_code("  ab12cd \n") == "AB12CD"

    @pytest.mark.parametrize("raw", [None, "", "   ", 123])
    def test_missing_code(self, raw):
        """Missing code raises ValidationError."""
        with pytest.raises(ValidationError):
            normalize_code(raw)

    @pytest.mark.parametrize("raw", ["ABC12", "ABC1234", "AB-123", "ÄBC123", "AB 123"])
    def test_malformed_code(self, raw):
        """Wrong length or characters raise ValidationError."""
        with pytest.raises(ValidationError):
            normalize_code(raw)
