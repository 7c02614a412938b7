"""Price resolution for discount campaigns.

Lowest-price rule:
    Candidate(rule) = Fixed Price                        if set
                    = Base Price - Amount                if set
                    = Base Price × (1 - Percent / 100)   if set
                    = Base Price                         otherwise
    Final Price     = min(Base Price, max(0, Candidate) for every rule)

Each candidate is computed against the base price, never against the output of
another rule, so discounts never stack.
"""

from collections.abc import Iterable
from decimal import ROUND_HALF_UP, Decimal

from price_sync.pricing.models import DiscountKind, DiscountRule

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def _as_decimal(value: Decimal | int | float | str) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def calculate_candidate(base_price: Decimal, rule: DiscountRule) -> Decimal:
    """Calculate the price a single rule would produce on its own.

    Args:
        base_price: Undiscounted price
        rule: Discount rule of one campaign

    Returns:
        Candidate price, clamped to zero
    """
    base_price = _as_decimal(base_price)
    kind = rule.kind

    if kind is DiscountKind.FIXED_PRICE:
        candidate = rule.fixed_price
    elif kind is DiscountKind.AMOUNT:
        candidate = base_price - rule.amount
    elif kind is DiscountKind.PERCENT:
        candidate = base_price * (1 - rule.percent / HUNDRED)
    else:
        candidate = base_price

    return max(ZERO, candidate)


def resolve_price(base_price: Decimal, rules: Iterable[DiscountRule]) -> Decimal:
    """Resolve the final price under the lowest-price rule.

    A rule can only lower the price, never raise it. With no rules the base
    price is returned unchanged.

    Args:
        base_price: Undiscounted price
        rules: Rules of every campaign effective for the priced unit

    Returns:
        Lowest of the base price and every rule's candidate (unrounded)
    """
    base_price = _as_decimal(base_price)
    lowest = base_price

    for rule in rules:
        candidate = calculate_candidate(base_price, rule)
        if candidate < lowest:
            lowest = candidate

    return lowest


def round_price(price: Decimal, quantum: Decimal) -> Decimal:
    """Round a price to the storage granularity, half up."""
    return _as_decimal(price).quantize(quantum, rounding=ROUND_HALF_UP)
