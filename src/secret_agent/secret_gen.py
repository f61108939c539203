"""Random secret generation."""

import secrets
from enum import Enum

ALPHANUMERIC = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789"
ASCII_PRINTABLE = ALPHANUMERIC + "!@#$%^&*()-_=+[]{}|;:,.<>?"
HEX = "0123456789abcdef"
BASE64 = ALPHANUMERIC + "+/"


class Charset(Enum):
    ALPHANUMERIC = "alphanumeric"
    ASCII = "ascii"
    HEX = "hex"
    BASE64 = "base64"

    @classmethod
    def parse(cls, text: str) -> "Charset":
        """Look up a charset by name, case-insensitively."""
        try:
            return cls(text.strip().lower())
        except ValueError:
            raise ValueError(f"unknown charset: {text}") from None

    @property
    def alphabet(self) -> str:
        return _ALPHABETS[self]


_ALPHABETS = {
    Charset.ALPHANUMERIC: ALPHANUMERIC,
    Charset.ASCII: ASCII_PRINTABLE,
    Charset.HEX: HEX,
    Charset.BASE64: BASE64,
}


def generate(length: int = 32, charset: Charset = Charset.ALPHANUMERIC) -> str:
    """Generate a random string of `length` characters drawn from `charset`."""
    if length < 0:
        raise ValueError("length must not be negative")

    alphabet = charset.alphabet
    return "".join(secrets.choice(alphabet) for _ in range(length))
