"""Indian postal (PIN) code helpers."""

from __future__ import annotations

import re

_PINCODE_RE = re.compile(r"^[1-9]\d{5}$")
_WHITESPACE_RE = re.compile(r"\s+")


def normalize_pincode(pincode: str) -> str:
    return _WHITESPACE_RE.sub("", pincode)


def is_valid_pincode(pincode: str) -> bool:
    """Six digits, first digit non-zero."""
    return bool(_PINCODE_RE.match(normalize_pincode(pincode)))


def estimate_distance_category(from_pincode: str, to_pincode: str) -> str:
    """Approximate ``local``/``regional``/``national`` from PIN prefixes."""
    if not (is_valid_pincode(from_pincode) and is_valid_pincode(to_pincode)):
        return "national"
    origin = normalize_pincode(from_pincode)
    destination = normalize_pincode(to_pincode)
    if origin[:2] == destination[:2]:
        return "local"
    if origin[0] == destination[0]:
        return "regional"
    return "national"
