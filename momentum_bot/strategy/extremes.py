"""
Peak/valley tracking.

The engine follows one swing at a time.  While looking for an entry it
follows a rally away from the most recent low; while holding it follows
a decline away from the most recent high.  Each tracker is a pure
function taking the previous extremes and a new price and returning
the updated extremes and what the price did to them.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Tuple


class ExtremeKind(str, Enum):
    NEW_PEAK = "new_peak"
    NEW_VALLEY = "new_valley"
    NO_CHANGE = "no_change"


@dataclass(frozen=True)
class PriceExtremes:
    """Running peak and valley since the last reset."""
    peak: Decimal
    valley: Decimal

    @classmethod
    def starting_at(cls, price: Decimal) -> "PriceExtremes":
        return cls(peak=price, valley=price)


def track_rally(extremes: PriceExtremes, price: Decimal) -> Tuple[PriceExtremes, ExtremeKind]:
    """Update extremes while waiting to buy.

    A higher price raises the peak and keeps the valley, so the rise is
    measured from the low the rally started at.  A lower price starts a
    new swing: both peak and valley move down to it.
    """
    if price > extremes.peak:
        return PriceExtremes(peak=price, valley=extremes.valley), ExtremeKind.NEW_PEAK
    if price < extremes.valley:
        return PriceExtremes.starting_at(price), ExtremeKind.NEW_VALLEY
    return extremes, ExtremeKind.NO_CHANGE


def track_decline(extremes: PriceExtremes, price: Decimal) -> Tuple[PriceExtremes, ExtremeKind]:
    """Update extremes while waiting to sell.

    A higher price starts a new swing from the top: both peak and valley
    move up to it.  A lower price deepens the valley and keeps the peak.
    """
    if price > extremes.peak:
        return PriceExtremes.starting_at(price), ExtremeKind.NEW_PEAK
    if price < extremes.valley:
        return PriceExtremes(peak=extremes.peak, valley=price), ExtremeKind.NEW_VALLEY
    return extremes, ExtremeKind.NO_CHANGE
