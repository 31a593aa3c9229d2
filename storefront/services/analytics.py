"""Purchase analytics: tracking values, event building and sinks."""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Protocol, Sequence

from storefront.core.money import ZERO, to_money
from storefront.schemas.cart import LineItem, PriceSnapshot
from storefront.schemas.checkout import PurchaseEvent, PurchaseEventItem

logger = logging.getLogger(__name__)


class AnalyticsSink(Protocol):
    """Receives purchase events."""

    def emit(self, event: PurchaseEvent) -> None: ...


class LoggingAnalyticsSink:
    """Sink that writes purchase events to the application log."""

    def emit(self, event: PurchaseEvent) -> None:
        logger.info(
            "Purchase tracked: %s value=%s %s items=%d",
            event.transaction_id,
            event.value,
            event.currency,
            len(event.items),
        )


@dataclass
class RecordingAnalyticsSink:
    """Sink that keeps emitted events in memory."""

    events: list[PurchaseEvent] = field(default_factory=list)

    def emit(self, event: PurchaseEvent) -> None:
        self.events.append(event)


@dataclass
class TrackingConfig:
    """Configuration for analytics values."""

    use_offer_price: bool = False
    currency: str = "INR"

    @classmethod
    def from_settings(cls) -> "TrackingConfig":
        """Create config from application settings."""
        from storefront.core.config import get_settings
        settings = get_settings()
        return cls(use_offer_price=settings.tracking_use_offer_price, currency=settings.currency)


def tracking_price(item: LineItem, config: TrackingConfig) -> Decimal:
    """Unit price reported to analytics for an item."""
    if config.use_offer_price:
        return to_money(item.unit_discounted_price) or to_money(item.unit_price)
    return to_money(item.unit_price) or to_money(item.unit_discounted_price)


def tracking_total(paid_amount: Decimal, snapshot: PriceSnapshot, config: TrackingConfig) -> Decimal:
    """Purchase value reported to analytics.

    Offer-price tracking reports what was paid. MRP tracking reports the
    cart MRP and falls back to the paid amount when no MRP is known.
    """
    paid = to_money(paid_amount)
    if config.use_offer_price:
        return paid
    mrp = to_money(snapshot.total_mrp)
    if mrp > 0:
        return mrp
    if paid > 0:
        logger.warning("No MRP available for tracking; reporting paid amount %s", paid)
    return paid


def purchase_items(items: Sequence[LineItem], config: TrackingConfig) -> list[PurchaseEventItem]:
    """Event lines for the cart being purchased."""
    return [
        PurchaseEventItem(
            item_id=item.product_id,
            item_name=item.name or "Unknown Product",
            quantity=item.quantity,
            price=tracking_price(item, config),
        )
        for item in items
    ]


def build_purchase_event(
    transaction_id: str,
    tracked_value: Decimal,
    items: Sequence[PurchaseEventItem],
    config: TrackingConfig,
) -> PurchaseEvent:
    """Assemble the purchase event for a confirmed transaction."""
    return PurchaseEvent(
        transaction_id=transaction_id,
        value=to_money(tracked_value),
        currency=config.currency,
        items=list(items),
        tax=ZERO,
        shipping=ZERO,
    )
