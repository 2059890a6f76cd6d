"""Points earning rule: a linear rate plus amount-based bonus tiers."""

from __future__ import annotations

from decimal import ROUND_FLOOR, Decimal

from loyalty_relay.core.settings import settings
from loyalty_relay.schemas.loyalty import PointsCalculation

# (threshold, bonus) pairs, highest threshold first.
BONUS_TIERS: tuple[tuple[Decimal, int], ...] = (
    (Decimal("50"), 50),
    (Decimal("25"), 25),
)


def bonus_for_amount(amount: Decimal) -> int:
    for threshold, bonus in BONUS_TIERS:
        if amount >= threshold:
            return bonus
    return 0


def calculate_points(amount: Decimal | float | int | str, points_per_dollar: int | None = None) -> PointsCalculation:
    """Return the points breakdown for a transaction amount.

    Pure: the same amount and rate always produce the same result, which is
    what lets a void reverse exactly what the accrual awarded.
    """

    value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    rate = settings.points_per_dollar if points_per_dollar is None else points_per_dollar
    base_points = int((value * rate).to_integral_value(rounding=ROUND_FLOOR))
    bonus_points = bonus_for_amount(value)
    return PointsCalculation(
        transaction_amount=value,
        base_points=base_points,
        bonus_points=bonus_points or None,
        total_points=base_points + bonus_points,
    )


__all__ = ["BONUS_TIERS", "bonus_for_amount", "calculate_points"]
