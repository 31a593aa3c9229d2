"""Stored payment and transaction record type definitions."""

from typing import TypedDict


class StoredPaymentAmount(TypedDict):
    """Payment amount record as persisted under the payment-amount key.

    Amounts are decimal strings. An unlocked record is re-derivable and is
    overwritten on every price change; a locked one belongs to checkout.
    """

    amount: str
    locked: bool
    source: str
    updated_at: float


class StoredPurchaseItem(TypedDict):
    """Purchase event line kept with its transaction record."""

    item_id: str
    item_name: str
    quantity: int
    price: str


class StoredTransactionRecord(TypedDict):
    """Transaction identity for one order, stored per order id.

    Holds the charged amount and the event contents fixed at first
    confirmation, so a retried event matches the original.
    """

    transaction_id: str
    order_id: str
    payment_method: str
    amount: str
    tracked_value: str
    items: list[StoredPurchaseItem]
    created_at: float
    expires_at: float


class TrackedPurchase(TypedDict):
    """Dedupe entry for a purchase event that has been emitted."""

    transaction_id: str
    value: str
    currency: str
    item_count: int
    fired_at: float
