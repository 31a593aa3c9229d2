"""Cart pricing under the buy-3-get-the-cheapest-free promotion.

Business Rules:
1. Offer prices apply only to sessions eligible for offers; otherwise every
   line is charged at MRP and no discount is reported.
2. For every complete group of 3 distinct products, the cheapest product's
   offer price is discounted once. Quantity does not count toward groups and
   does not multiply the free unit.
3. Ties between equally priced products keep cart order.
4. The payable amount never goes below zero.

Everything here is pure: callers own persistence.
"""

from decimal import Decimal
from typing import Iterable, Sequence

from storefront.core.money import ZERO, to_money
from storefront.schemas.cart import LineItem, PriceSnapshot

GROUP_SIZE = 3


def effective_unit_price(item: LineItem, eligible: bool) -> Decimal:
    """Price one unit is charged at before the group promotion."""
    return to_money(item.unit_discounted_price if eligible else item.unit_price)


def _distinct(items: Iterable[LineItem]) -> list[LineItem]:
    """First occurrence of each product id, in cart order."""
    seen: set[str] = set()
    distinct = []
    for item in items:
        if item.product_id not in seen:
            seen.add(item.product_id)
            distinct.append(item)
    return distinct


def free_items(items: Sequence[LineItem], eligible: bool) -> list[tuple[str, Decimal]]:
    """Products the group promotion makes free.

    Args:
        items: Cart line items.
        eligible: Whether the session qualifies for offers.

    Returns:
        list: (product_id, discounted unit price) pairs, cheapest first.
    """
    if not eligible:
        return []

    distinct = _distinct(items)
    groups = len(distinct) // GROUP_SIZE
    if groups == 0:
        return []

    prices = [(item.product_id, effective_unit_price(item, eligible)) for item in distinct]
    # sorted() is stable, so equal prices keep cart order
    prices = sorted(prices, key=lambda pair: pair[1])
    return prices[:groups]


def group_discount(items: Sequence[LineItem], eligible: bool) -> Decimal:
    """Total extra discount awarded by the group promotion."""
    return sum((price for _, price in free_items(items, eligible)), ZERO)


def compute_snapshot(items: Sequence[LineItem], eligible: bool) -> PriceSnapshot:
    """Compute cart totals.

    Args:
        items: Cart line items.
        eligible: Whether offer pricing and the promotion apply.

    Returns:
        PriceSnapshot: MRP, discounted total, extra discount and payable.
    """
    if not items:
        return PriceSnapshot.empty()

    total_mrp = ZERO
    total_discounted = ZERO
    for item in items:
        quantity = max(item.quantity, 1)
        total_mrp += to_money(item.unit_price) * quantity
        total_discounted += effective_unit_price(item, eligible) * quantity

    extra_discount = group_discount(items, eligible)
    final_payable = max(ZERO, total_discounted - extra_discount)

    return PriceSnapshot(
        total_mrp=total_mrp,
        total_discounted_price=total_discounted,
        extra_discount=extra_discount,
        final_payable=final_payable,
    )
