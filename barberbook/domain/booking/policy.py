"""Deposit policies - how much to charge up front for a DEPOSIT booking"""

from typing import Callable

from ...config import BOOKING_DEPOSIT_MIN_CENTS, BOOKING_DEPOSIT_PERCENT

DepositPolicy = Callable[[int], int]


def percentage_deposit(
    percent: int = BOOKING_DEPOSIT_PERCENT, min_cents: int = BOOKING_DEPOSIT_MIN_CENTS
) -> DepositPolicy:
    """
    Percentage of the service price, rounded half up, with a floor.
    Never more than the full price.
    """
    if not 0 <= percent <= 100:
        raise ValueError("Deposit percent must be between 0 and 100")

    def policy(price_cents: int) -> int:
        amount = max((price_cents * percent + 50) // 100, min_cents)
        return min(amount, price_cents)

    return policy
