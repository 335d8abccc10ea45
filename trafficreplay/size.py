"""Parsing of human readable data sizes such as ``32mb`` or ``0x10kb``."""

from __future__ import annotations

import re

KB = 1 << 10
MB = 1 << 20
GB = 1 << 30
TB = 1 << 40

_INT64_MAX = (1 << 63) - 1

_NUMBER = r"(?:0b|0x|0o)?[0-9a-f_]+"

# Order matters: a plain number is tried first, then each unit suffix.
_PATTERNS = (
    (re.compile(_NUMBER, re.IGNORECASE), 0, 1),
    (re.compile(_NUMBER + "kb", re.IGNORECASE), 2, KB),
    (re.compile(_NUMBER + "mb", re.IGNORECASE), 2, MB),
    (re.compile(_NUMBER + "gb", re.IGNORECASE), 2, GB),
    (re.compile(_NUMBER + "tb", re.IGNORECASE), 2, TB),
)

_PREFIX_BASES = {"b": 2, "o": 8, "x": 16}
_HEX_DIGITS = "0123456789abcdef"


def _underscores_ok(text: str) -> bool:
    """Check that underscores only separate digits (or follow a base prefix)."""
    saw = "^"
    start = 0
    is_hex = False
    if len(text) >= 2 and text[0] == "0" and text[1].lower() in _PREFIX_BASES:
        start = 2
        saw = "0"
        is_hex = text[1].lower() == "x"
    for ch in text[start:]:
        lower = ch.lower()
        if ch.isascii() and (ch.isdigit() or (is_hex and "a" <= lower <= "f")):
            saw = "0"
            continue
        if ch == "_":
            if saw != "0":
                return False
            saw = "_"
            continue
        if saw == "_":
            return False
        saw = "!"
    return saw != "_"


def _parse_int(text: str) -> int:
    """Parse an integer literal, detecting the base from its prefix."""
    digits = text
    base = 10
    if digits.startswith("0"):
        prefix = digits[1:2].lower()
        if len(digits) >= 3 and prefix in _PREFIX_BASES:
            base = _PREFIX_BASES[prefix]
            digits = digits[2:]
        else:
            base = 8
            digits = digits[1:]

    value = 0
    underscores = False
    for ch in digits:
        if ch == "_":
            underscores = True
            continue
        digit = _HEX_DIGITS.find(ch.lower())
        if digit < 0 or digit >= base:
            raise ValueError(f"invalid size {text!r}")
        value = value * base + digit
        if value > _INT64_MAX:
            raise ValueError(f"size {text!r} out of range")

    if underscores and not _underscores_ok(text):
        raise ValueError(f"invalid size {text!r}")
    return value


def parse_size(text: str) -> int | None:
    """Parse a size with an optional ``kb``/``mb``/``gb``/``tb`` unit.

    Numbers may use ``0b``, ``0o``, ``0x`` or leading-zero octal notation and
    underscores between digits. Empty text yields ``None`` (nothing to set).
    Raises ``ValueError`` for anything that is not a valid size.
    """
    if text == "":
        return None
    for pattern, suffix_len, unit in _PATTERNS:
        if pattern.fullmatch(text):
            number = text[: len(text) - suffix_len] if suffix_len else text
            return _parse_int(number) * unit
    raise ValueError(f"invalid size {text!r}")