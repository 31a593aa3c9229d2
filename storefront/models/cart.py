"""Stored cart type definitions."""

from typing import TypedDict


class StoredLineItem(TypedDict, total=False):
    """One line item as persisted in the cart-items list.

    Prices are decimal strings.
    """

    product_id: str
    name: str | None
    unit_price: str
    unit_discounted_price: str
    quantity: int
    size: str | None
