"""Stored record type definitions."""

from storefront.models.cart import StoredLineItem
from storefront.models.payment import (
    StoredPaymentAmount,
    StoredPurchaseItem,
    StoredTransactionRecord,
    TrackedPurchase,
)

__all__ = [
    "StoredLineItem",
    "StoredPaymentAmount",
    "StoredPurchaseItem",
    "StoredTransactionRecord",
    "TrackedPurchase",
]
