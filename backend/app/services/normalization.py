"""
Value normalization utilities.

Used by conflict detection to decide whether an incoming archive value
really differs from the stored one. Normalizations are composable:
each is a small function that can be chained.
"""

import re
from decimal import Decimal, InvalidOperation
from typing import Any


def normalize_whitespace(value: str) -> str:
    """Collapse whitespace and strip."""
    return re.sub(r"\s+", " ", value.strip())


def normalize_case(value: str) -> str:
    """Lowercase for case-insensitive comparison."""
    return value.lower()


def normalize_identifier(value: str) -> str:
    """
    Standard text normalization chain.
    'John  SMITH' → 'john smith'
    '  jane@Example.com ' → 'jane@example.com'
    """
    return normalize_case(normalize_whitespace(value))


def normalize_numeric(value: str) -> str:
    """
    Normalize numeric strings for comparison.
    Strips trailing zeros and normalizes representation.
    """
    try:
        d = Decimal(value.strip())
        return str(d.normalize())
    except InvalidOperation:
        return value.strip()


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


# ─── Value Comparison ─────────────────────────────────────────

def values_match(val_a: Any, val_b: Any) -> bool:
    """
    Compare two archive values with normalization.

    Blank strings and None are equivalent. Structured values (addresses,
    social links) and booleans compare exactly; numbers numerically;
    text case- and whitespace-insensitively.
    """
    if _is_blank(val_a) and _is_blank(val_b):
        return True
    if _is_blank(val_a) or _is_blank(val_b):
        return False

    if isinstance(val_a, (dict, list, bool)) or isinstance(val_b, (dict, list, bool)):
        return val_a == val_b

    a = str(val_a).strip()
    b = str(val_b).strip()

    # Try numeric comparison
    try:
        Decimal(a)
        Decimal(b)
    except InvalidOperation:
        pass
    else:
        return normalize_numeric(a) == normalize_numeric(b)

    # Fall back to normalized string comparison
    return normalize_identifier(a) == normalize_identifier(b)
