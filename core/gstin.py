"""
GSTIN validation.

Layout: 2-digit state code, 10-character PAN, entity number, 'Z', check
character. The check character is a base-36 weighted checksum over the first
14 characters.
"""

import re

_GSTIN_PATTERN = re.compile(r"^[0-9]{2}[A-Z]{5}[0-9]{4}[A-Z][1-9A-Z]Z[0-9A-Z]$")
_ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


def gstin_check_character(first14: str) -> str:
    """Compute the check character for the first 14 GSTIN characters."""
    total = 0
    for position, char in enumerate(first14):
        factor = 2 if position % 2 else 1
        product = _ALPHABET.index(char) * factor
        total += product // 36 + product % 36
    return _ALPHABET[(36 - total % 36) % 36]


def validate_gstin(gstin: str | None) -> bool:
    """True when gstin is well-formed and its check character matches."""
    if not gstin or len(gstin) != 15:
        return False
    if not _GSTIN_PATTERN.match(gstin):
        return False
    return gstin[14] == gstin_check_character(gstin[:14])


def state_code_from_gstin(gstin: str) -> str:
    """Two-digit state code a GSTIN is registered in."""
    if not validate_gstin(gstin):
        raise ValueError(f"Invalid GSTIN: {gstin}")
    return gstin[:2]
