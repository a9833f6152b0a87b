"""Pure validators for names, hashes and references.

Each ``validate_*`` function returns an error message for bad input and None
for good input; callers that must not continue turn the message into one of
the :mod:`logbook_anchor.errors` exceptions.
"""
from __future__ import annotations
import re
from typing import Any

NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")
HASH_PATTERN = re.compile(r"^0x[0-9a-fA-F]{64}$")


def validate_name(value: Any) -> str | None:
    if not isinstance(value, str) or not value.strip():
        return "Name cannot be empty"
    if not NAME_PATTERN.match(value.strip()):
        return "Name must contain only letters, numbers, _ or -"
    return None


def is_entry_hash(value: Any) -> bool:
    return isinstance(value, str) and HASH_PATTERN.match(value) is not None


def is_external_ref(value: Any) -> bool:
    """True for a real anchoring transaction reference (never the reconstruction sentinel)."""
    return is_entry_hash(value)


def validate_non_negative_int(value: Any, field: str) -> str | None:
    if isinstance(value, bool) or not isinstance(value, int):
        return f"{field} must be an integer"
    if value < 0:
        return f"{field} must be a non-negative integer"
    return None


def validate_stored_name(value: Any) -> str | None:
    """As validate_name, for names used verbatim as storage keys: surrounding whitespace is an error."""
    problem = validate_name(value)
    if problem is None and value != value.strip():
        return "Name must not have surrounding whitespace"
    return problem
