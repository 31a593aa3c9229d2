"""Cart session: wires the ledger, pricing, synchronizer and transactions.

One session corresponds to one storage namespace, i.e. one browser profile.
Components talk through the ledger subscription: every ledger change is
priced and handed to the synchronizer, which is the only writer of totals
and the payment amount.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Iterable, Mapping

from storefront.core.money import ZERO, to_money
from storefront.core.storage import KeyValueStore, StorageKey
from storefront.schemas.cart import LineItem, PriceSnapshot, Size
from storefront.schemas.checkout import PurchaseResult
from storefront.services.analytics import (
    AnalyticsSink,
    LoggingAnalyticsSink,
    TrackingConfig,
    build_purchase_event,
    purchase_items,
    tracking_total,
)
from storefront.services.cart_expiration import CartExpirationConfig, CartExpirationMonitor
from storefront.services.cart_ledger import CartLedger, CartLedgerConfig
from storefront.services.discount_policy import compute_snapshot, free_items
from storefront.services.price_synchronizer import PriceSynchronizer, PriceSynchronizerConfig, ReconcileResult
from storefront.services.transaction_identity import TransactionIdentityConfig, TransactionIdentityManager

logger = logging.getLogger(__name__)

EligibilitySource = Callable[[], bool]


def _never_eligible() -> bool:
    return False


@dataclass
class CartSessionConfig:
    """Configuration for every component of a cart session."""

    expiration: CartExpirationConfig = field(default_factory=CartExpirationConfig)
    ledger: CartLedgerConfig = field(default_factory=CartLedgerConfig)
    synchronizer: PriceSynchronizerConfig = field(default_factory=PriceSynchronizerConfig)
    transactions: TransactionIdentityConfig = field(default_factory=TransactionIdentityConfig)
    tracking: TrackingConfig = field(default_factory=TrackingConfig)

    @classmethod
    def from_settings(cls) -> "CartSessionConfig":
        """Create config from application settings."""
        return cls(
            expiration=CartExpirationConfig.from_settings(),
            ledger=CartLedgerConfig.from_settings(),
            synchronizer=PriceSynchronizerConfig.from_settings(),
            transactions=TransactionIdentityConfig.from_settings(),
            tracking=TrackingConfig.from_settings(),
        )


class CartSession:
    """Cart pricing and checkout state for one storage namespace."""

    def __init__(
        self,
        store: KeyValueStore,
        eligibility: EligibilitySource = _never_eligible,
        sink: AnalyticsSink | None = None,
        config: CartSessionConfig | None = None,
    ) -> None:
        """Initialize the session and load the cart from storage.

        Args:
            store: Namespaced key-value store for this session.
            eligibility: Returns whether offer pricing applies right now.
            sink: Analytics destination; logs events when omitted.
            config: Optional component configuration.
        """
        self.store = store
        self.eligibility = eligibility
        self.config = config or CartSessionConfig()

        self.monitor = CartExpirationMonitor(store, self.config.expiration)
        self.ledger = CartLedger(store, self.monitor, self.config.ledger)
        self.synchronizer = PriceSynchronizer(store, self._live_snapshot, self.config.synchronizer)
        self.transactions = TransactionIdentityManager(
            store, sink or LoggingAnalyticsSink(), self.config.transactions
        )

        self.ledger.subscribe(self._on_ledger_changed)
        self.monitor.on_expired(self.synchronizer.release)
        self.monitor.on_expired(self.synchronizer.clear_totals)

    def _live_snapshot(self) -> PriceSnapshot:
        return compute_snapshot(self.ledger.items, self.eligibility())

    def _on_ledger_changed(self, items: list[LineItem]) -> None:
        self.synchronizer.on_snapshot_changed(compute_snapshot(items, self.eligibility()))

    # Reads

    @property
    def items(self) -> list[LineItem]:
        return self.ledger.items

    @property
    def snapshot(self) -> PriceSnapshot:
        """Totals for the current cart and eligibility."""
        return self._live_snapshot()

    def payable_amount(self) -> Decimal:
        """Amount checkout will charge: the stored record, else the live total."""
        record = self.synchronizer.payment_amount()
        if record is not None:
            return record.amount
        return self.snapshot.final_payable

    def free_product_ids(self) -> list[str]:
        return [product_id for product_id, _ in free_items(self.items, self.eligibility())]

    def activate(self) -> ReconcileResult:
        """Re-derive state from storage on page load or tab activation."""
        self.ledger.reload()
        return self.synchronizer.reconcile_from_storage()

    def refresh(self) -> PriceSnapshot:
        """Reprice after an eligibility change."""
        snapshot = self._live_snapshot()
        self.synchronizer.on_snapshot_changed(snapshot)
        return snapshot

    # Mutations

    def add_item(
        self,
        product: LineItem | Mapping[str, Any],
        quantity: Any = None,
        size: Size | str | None = None,
    ) -> list[LineItem]:
        return self.ledger.add_or_update(product, quantity, size)

    def update_item(self, product_id: str, quantity: Any, size: Size | str | None = None) -> list[LineItem]:
        """Change quantity and size of an item already in the cart.

        Raises:
            KeyError: If the product is not in the cart.
        """
        existing = self.ledger.find(product_id)
        if existing is None:
            raise KeyError(product_id)
        return self.ledger.add_or_update(existing, quantity, size or existing.size)

    def remove_item(self, product_id: str) -> list[LineItem]:
        return self.ledger.remove(product_id)

    def set_items(self, items: Iterable[LineItem | Mapping[str, Any]]) -> list[LineItem]:
        return self.ledger.set_all(items)

    def clear_cart(self) -> None:
        """Empty the cart and drop its totals and payment amount."""
        self.ledger.clear()
        self.synchronizer.release()
        self.synchronizer.clear_totals()

    # Checkout

    def begin_checkout(self) -> Decimal:
        """Lock the amount to charge.

        Raises:
            NothingToCharge: If the cart has nothing to charge.
        """
        return self.synchronizer.commit_for_checkout()

    def abandon_checkout(self) -> bool:
        """Release the checkout lock and follow the cart again.

        Returns:
            bool: True if a lock was held.
        """
        was_locked = self.synchronizer.is_locked
        self.synchronizer.release()
        self.refresh()
        return was_locked

    def _amount_to_confirm(self, charged: Any) -> Decimal:
        """Amount for a first confirmation.

        A checkout lock wins. Without one, the amount the payment provider
        reports is used, so a cart that expired during a long redirect still
        confirms. The live cart is the last resort.
        """
        record = self.synchronizer.payment_amount()
        reported = to_money(charged) if charged is not None else ZERO
        if record is not None and record.locked:
            if reported > 0 and reported != record.amount:
                logger.warning("Provider reported %s but checkout locked %s", reported, record.amount)
            return record.amount
        if reported > 0:
            return reported
        return self.begin_checkout()

    def confirm_purchase(
        self,
        order_id: str,
        payment_method: str = "unknown",
        amount: Any = None,
    ) -> PurchaseResult:
        """Record a paid order and fire its purchase event once.

        A repeated confirmation for the same order (reload, back navigation,
        or a retry after the analytics sink failed) reuses the original
        transaction record and re-emits its event only if it never fired.

        Args:
            order_id: Order identifier from the payment provider.
            payment_method: Payment method used.
            amount: Amount the provider charged, if known.

        Raises:
            ValueError: If order_id is empty.
            NothingToCharge: If a first confirmation finds nothing to charge.
        """
        if not order_id:
            raise ValueError("order_id is required")

        record = self.transactions.get_record(order_id)
        first_confirmation = record is None
        if record is None:
            paid = self._amount_to_confirm(amount)
            record = self.transactions.get_or_create_record(
                order_id,
                payment_method,
                paid,
                tracked_value=tracking_total(paid, self.snapshot, self.config.tracking),
                items=purchase_items(self.items, self.config.tracking),
            )

        self.store.set(StorageKey.ORDER_ID, order_id)

        event = build_purchase_event(record.transaction_id, record.tracked_value, record.items, self.config.tracking)
        fired = self.transactions.mark_event_fired(record.transaction_id, event)

        if first_confirmation:
            self.synchronizer.release()
            self.ledger.clear()
            self.synchronizer.clear_totals()
            logger.info("Order %s confirmed for %s; cart cleared", order_id, record.amount)

        return PurchaseResult(
            transaction_id=record.transaction_id,
            order_id=order_id,
            amount=record.amount,
            event_fired=fired,
        )
