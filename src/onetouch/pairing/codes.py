"""Short pairing code generation and normalization.

Codes are six characters over A-Z and 0-9 (36^6, about 2.1e9 codes).
Uniqueness is not checked here; the session store enforces it.
"""

import re
import secrets
import string
from typing import Optional, Protocol, Sequence

from onetouch.errors import ValidationError

CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 6

CODE_PATTERN = re.compile(rf"^[A-Z0-9]{{{CODE_LENGTH}}}$")


class RandomSource(Protocol):
    """Anything with a uniform ``choice`` (random.Random, SystemRandom)."""

    def choice(self, seq: Sequence[str]) -> str:
        ...


class CodeGenerator:
    """Generates short human-presentable pairing codes.

    The randomness source is injectable so tests can use a seeded
    ``random.Random``. Production uses the OS CSPRNG.
    """

    def __init__(
        self,
        rng: Optional[RandomSource] = None,
        length: int = CODE_LENGTH,
        alphabet: str = CODE_ALPHABET,
    ):
        """Initialize generator.

        Args:
            rng: Random source. Defaults to secrets.SystemRandom().
            length: Number of characters per code.
            alphabet: Symbols to draw from.
        """
        if length <= 0:
            raise ValueError("Code length must be positive")
        if not alphabet:
            raise ValueError("Alphabet must not be empty")

        self._rng = rng or secrets.SystemRandom()
        self.length = length
        self.alphabet = alphabet

    def generate(self) -> str:
        """Generate a new code.

        Returns:
            Upper-case code of ``length`` characters.
        """
        return "".join(self._rng.choice(self.alphabet) for _ in range(self.length))


def normalize_code(raw: Optional[str]) -> str:
    """Normalize a code received from a caller.

    Args:
        raw: Code as typed or scanned (any case, surrounding whitespace).

    Returns:
        Upper-case code.

    Raises:
        ValidationError: If the code is missing or malformed.
    """
    if raw is None or not isinstance(raw, str):
        raise ValidationError("Missing code")

    code = raw.strip().upper()
    if not code:
        raise ValidationError("Missing code")
    if not CODE_PATTERN.match(code):
        raise ValidationError("Malformed code")
    return code
