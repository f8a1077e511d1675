"""
Amount and identity normalization.

Canonicalizes references and monetary amounts so equality comparisons are
stable across payment sources. All functions are pure.
"""

from __future__ import annotations

import re
from typing import Iterable, Optional

# Provider prefixes removed from references when nothing else is configured.
DEFAULT_STRIP_PREFIXES = ("MPESA",)

_PREFIX_SEPARATORS = "-_:/#."
_WHITESPACE_RE = re.compile(r"\s+")
_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")

# ISO 4217 minor-unit exponents that differ from the usual 2.
_CURRENCY_EXPONENTS = {
    "BIF": 0, "CLP": 0, "DJF": 0, "GNF": 0, "ISK": 0, "JPY": 0, "KMF": 0,
    "KRW": 0, "PYG": 0, "RWF": 0, "UGX": 0, "VND": 0, "VUV": 0, "XAF": 0,
    "XOF": 0, "XPF": 0,
    "BHD": 3, "IQD": 3, "JOD": 3, "KWD": 3, "LYD": 3, "OMR": 3, "TND": 3,
}


class AmountValidationError(ValueError):
    """Raised when an amount is not a non-negative integer of minor units."""


def normalize_reference(
    raw: Optional[str], strip_prefixes: Iterable[str] = DEFAULT_STRIP_PREFIXES
) -> str:
    """
    Canonical form of a payment or invoice reference.

    Whitespace is removed, the value is upper-cased and one known provider
    prefix is dropped when a separator follows it, so ``"mpesa-abc123"`` and
    ``"ABC123 "`` both become ``"ABC123"``. Missing references normalize to
    an empty string.
    """
    if raw is None:
        return ""
    ref = _WHITESPACE_RE.sub("", str(raw)).upper()
    if not ref:
        return ""

    # Longest prefix first so "MPESA" wins over "MP" when both are configured.
    prefixes = sorted({p.strip().upper() for p in strip_prefixes if p and p.strip()}, key=len, reverse=True)
    for prefix in prefixes:
        if not ref.startswith(prefix):
            continue
        rest = ref[len(prefix):]
        if rest[:1] and rest[0] in _PREFIX_SEPARATORS:
            rest = rest.lstrip(_PREFIX_SEPARATORS)
            if rest:
                return rest
    return ref


def normalize_amount(value, field: str = "amount") -> int:
    """
    Validate an amount expressed in minor currency units.

    Only non-negative ``int`` values are accepted. Floats, decimals, strings
    and booleans are rejected rather than coerced.
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise AmountValidationError(
            f"{field} must be an integer number of minor units, got {type(value).__name__} {value!r}"
        )
    if value < 0:
        raise AmountValidationError(f"{field} must not be negative, got {value}")
    return value


def normalize_currency(raw) -> str:
    if not isinstance(raw, str):
        raise ValueError(f"currency must be a string, got {type(raw).__name__}")
    code = raw.strip().upper()
    if not _CURRENCY_RE.match(code):
        raise ValueError(f"currency must be a 3-letter ISO code, got {raw!r}")
    return code


def currency_exponent(currency: Optional[str]) -> int:
    if not currency:
        return 2
    return _CURRENCY_EXPONENTS.get(currency.upper(), 2)


def format_minor_units(amount: int, currency: Optional[str]) -> str:
    """Render minor units for humans, e.g. ``4500, "KES" -> "KES 45.00"``."""
    exponent = currency_exponent(currency)
    sign = "-" if amount < 0 else ""
    major, minor = divmod(abs(amount), 10 ** exponent)
    text = f"{major:,}"
    if exponent:
        text = f"{text}.{minor:0{exponent}d}"
    code = currency.upper() if currency else ""
    return f"{code} {sign}{text}".strip()
