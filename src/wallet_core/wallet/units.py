"""Exact conversion between decimal amount strings and integer minor units.

All arithmetic is done on ``int``; no float or ``Decimal`` is involved so
that deep-decimal amounts (18-decimal tokens) survive unchanged.
"""

from __future__ import annotations

import re

from wallet_core.errors import ValidationError

MAX_DECIMALS = 36

# Amounts must fit a uint256 slot once scaled.
MAX_AMOUNT = 2**256 - 1
MAX_WHOLE_DIGITS = 78

_AMOUNT_RE = re.compile(r"^([0-9]*)(?:\.([0-9]*))?$")


def _check_decimals(decimals: int) -> None:
    if not isinstance(decimals, int) or isinstance(decimals, bool):
        raise ValidationError(f"Token decimals must be an integer, got {decimals!r}")
    if decimals < 0 or decimals > MAX_DECIMALS:
        raise ValidationError(f"Token decimals out of range: {decimals}")


def to_minor_units(amount: str, decimals: int) -> int:
    """Convert ``"0.01"`` with 18 decimals to ``10000000000000000``.

    Raises :class:`ValidationError` for anything that is not a plain
    non-negative decimal, or that carries more fractional digits than the
    token can represent.
    """
    _check_decimals(decimals)
    if not isinstance(amount, str):
        raise ValidationError(f"Amount must be a decimal string, got {type(amount).__name__}")

    text = amount.strip().replace("_", "")
    match = _AMOUNT_RE.match(text)
    if not text or match is None:
        raise ValidationError(f"Invalid amount '{amount}'. Provide a number like '0.05'.")

    whole, frac = match.group(1), match.group(2) or ""
    if not whole and not frac:
        raise ValidationError(f"Invalid amount '{amount}'. Provide a number like '0.05'.")

    frac = frac.rstrip("0")
    if len(frac) > decimals:
        raise ValidationError(
            f"Amount '{amount}' has more than {decimals} decimal places"
        )

    whole = whole.lstrip("0")
    if len(whole) > MAX_WHOLE_DIGITS:
        raise ValidationError(f"Amount '{amount[:20]}...' is too large")
    try:
        value = int(whole or "0") * 10 ** decimals + int(frac.ljust(decimals, "0") or "0")
    except ValueError as exc:
        raise ValidationError(f"Invalid amount '{amount[:20]}'") from exc
    if value > MAX_AMOUNT:
        raise ValidationError(f"Amount '{amount}' exceeds the uint256 range")
    return value


def from_minor_units(value: int, decimals: int) -> str:
    """Render minor units as an exact decimal string, trailing zeros trimmed."""
    _check_decimals(decimals)
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValidationError(f"Minor-unit value must be an integer, got {value!r}")

    sign = "-" if value < 0 else ""
    whole, remainder = divmod(abs(value), 10 ** decimals)
    if decimals == 0 or remainder == 0:
        return f"{sign}{whole}"
    frac = str(remainder).rjust(decimals, "0").rstrip("0")
    return f"{sign}{whole}.{frac}"


def format_display(value: int, decimals: int, places: int = 4) -> str:
    """Round half-up to ``places`` fractional digits for display only."""
    _check_decimals(decimals)
    if places >= decimals:
        whole, _, frac = from_minor_units(value, decimals).partition(".")
        return f"{whole}.{frac.ljust(places, '0')}" if places else whole

    step = 10 ** (decimals - places)
    sign = "-" if value < 0 else ""
    rounded = (abs(value) + step // 2) // step
    whole, frac = divmod(rounded, 10 ** places)
    if places == 0:
        return f"{sign}{whole}"
    return f"{sign}{whole}.{str(frac).rjust(places, '0')}"


def parse_quantity(value: str | int | None) -> int:
    """Parse a JSON-RPC hex quantity (``"0x1a"``); ``"0x"``/empty means 0."""
    if value is None:
        return 0
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("", "0x"):
        return 0
    try:
        return int(text, 16) if text.startswith("0x") else int(text)
    except ValueError as exc:
        raise ValidationError(f"Invalid hex quantity '{value}'") from exc


def to_quantity(value: int) -> str:
    """Encode an integer as a JSON-RPC hex quantity."""
    return hex(value)
