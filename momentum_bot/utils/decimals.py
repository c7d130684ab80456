"""
Decimal helpers.

Exchange payloads carry amounts as strings or floats; the engine works
with ``Decimal`` only.  This module centralises the conversions and the
rounding rules applied to order prices and sizes.
"""

from __future__ import annotations

from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal
from typing import Any


def to_decimal(value: Any, default: str = "0") -> Decimal:
    """Convert an exchange value to ``Decimal``.

    ``None`` and empty strings map to `default`.  Floats go through
    ``str`` so ``0.1`` becomes ``Decimal("0.1")`` rather than its binary
    expansion.
    """
    if value is None or value == "":
        return Decimal(default)
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def precision_from_increment(increment: Any) -> int:
    """Number of decimal places allowed by an increment string.

    ``"0.01000000"`` gives 2, ``"0.00000001"`` gives 8 and ``"1"`` gives 0.
    """
    exponent = to_decimal(increment).normalize().as_tuple().exponent
    return max(0, -int(exponent))


def _quantum(places: int) -> Decimal:
    return Decimal(1).scaleb(-places)


def round_price(value: Decimal, places: int) -> Decimal:
    """Round a price to `places` decimals, half up."""
    return value.quantize(_quantum(places), rounding=ROUND_HALF_UP)


def round_down(value: Decimal, places: int) -> Decimal:
    """Truncate `value` to `places` decimals.

    With ``places=0`` the result is an integral amount, as required for
    products that trade whole units only.
    """
    return value.quantize(_quantum(places), rounding=ROUND_DOWN)
