"""Idempotent transaction ids and purchase-event deduplication."""

import logging
import secrets
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Iterable

from pydantic import ValidationError

from storefront.core.money import money_str, to_money
from storefront.core.storage import KeyValueStore, StorageKey
from storefront.models.payment import StoredTransactionRecord, TrackedPurchase
from storefront.schemas.checkout import PurchaseEvent, PurchaseEventItem
from storefront.services.analytics import AnalyticsSink

logger = logging.getLogger(__name__)


@dataclass
class TransactionRecord:
    """Transaction identity for one order.

    The tracked value and items are fixed when the record is created, so a
    retried purchase event reports what the first attempt would have.
    """

    transaction_id: str
    order_id: str
    payment_method: str
    amount: Decimal
    tracked_value: Decimal
    created_at: float
    expires_at: float
    items: list[PurchaseEventItem] = field(default_factory=list)

    def to_stored(self) -> StoredTransactionRecord:
        return {
            "transaction_id": self.transaction_id,
            "order_id": self.order_id,
            "payment_method": self.payment_method,
            "amount": money_str(self.amount),
            "tracked_value": money_str(self.tracked_value),
            "items": [item.model_dump(mode="json") for item in self.items],
            "created_at": self.created_at,
            "expires_at": self.expires_at,
        }

    @classmethod
    def from_stored(cls, raw: Any) -> "TransactionRecord | None":
        if not isinstance(raw, dict) or not raw.get("transaction_id") or not raw.get("order_id"):
            return None

        items: list[PurchaseEventItem] = []
        stored_items = raw.get("items")
        for stored_item in stored_items if isinstance(stored_items, list) else []:
            try:
                items.append(PurchaseEventItem.model_validate(stored_item))
            except ValidationError:
                logger.warning("Dropping unreadable purchase item %r", stored_item)

        try:
            return cls(
                transaction_id=str(raw["transaction_id"]),
                order_id=str(raw["order_id"]),
                payment_method=str(raw.get("payment_method", "unknown")),
                amount=to_money(raw.get("amount", raw.get("tracked_value"))),
                tracked_value=to_money(raw.get("tracked_value")),
                created_at=float(raw.get("created_at") or 0),
                expires_at=float(raw.get("expires_at") or 0),
                items=items,
            )
        except (TypeError, ValueError):
            return None


@dataclass
class TransactionIdentityConfig:
    """Configuration for transaction identity."""

    transaction_ttl_seconds: int = 900  # 15 minutes
    tracked_purchase_ttl_seconds: int = 86400

    @classmethod
    def from_settings(cls) -> "TransactionIdentityConfig":
        """Create config from application settings."""
        from storefront.core.config import get_settings
        settings = get_settings()
        return cls(
            transaction_ttl_seconds=settings.transaction_ttl_seconds,
            tracked_purchase_ttl_seconds=settings.tracked_purchase_ttl_seconds,
        )


class TransactionIdentityManager:
    """Derives stable transaction ids and fires purchase events once."""

    def __init__(
        self,
        store: KeyValueStore,
        sink: AnalyticsSink,
        config: TransactionIdentityConfig | None = None,
    ) -> None:
        """Initialize the manager.

        Args:
            store: Namespaced key-value store.
            sink: Destination for purchase events.
            config: Optional configuration.
        """
        self.store = store
        self.sink = sink
        self.config = config or TransactionIdentityConfig()
        # Fallbacks used while the store refuses writes
        self._memory_records: dict[str, TransactionRecord] = {}
        self._memory_fired: dict[str, TrackedPurchase] = {}

    def _record_key(self, order_id: str) -> str:
        return f"{StorageKey.TRANSACTION_RECORD.value}:{order_id}"

    def _generate_transaction_id(self, order_id: str) -> str:
        """Build a new id: order id, 4 random digits, last 6 digits of the ms clock."""
        random_part = f"{secrets.randbelow(10000):04d}"
        timestamp = str(int(self.store.clock() * 1000))[-6:]
        return f"TXN-{order_id}-{random_part}-{timestamp}"

    def get_record(self, order_id: str) -> TransactionRecord | None:
        """Stored, unexpired transaction record for an order."""
        raw = self.store.get(self._record_key(order_id))
        record = TransactionRecord.from_stored(raw) if raw is not None else None
        if record is None:
            record = self._memory_records.get(order_id)

        if record is None:
            return None
        if self.store.clock() > record.expires_at:
            logger.debug("Transaction record for order %s expired", order_id)
            self.clear(order_id)
            return None
        if record.order_id != order_id:
            logger.warning("Transaction record under order %s names order %s; ignoring", order_id, record.order_id)
            return None
        return record

    def get_or_create_transaction_id(self, order_id: str, payment_method: str, amount: Any) -> str:
        """Return the order's transaction id, creating it once.

        The stored record is what makes this idempotent: while it lives,
        the same order id always yields the stored id.

        Args:
            order_id: Order identifier from the payment provider.
            payment_method: Payment method used.
            amount: Amount charged.

        Returns:
            str: The transaction id.

        Raises:
            ValueError: If order_id is empty.
        """
        return self.get_or_create_record(order_id, payment_method, amount).transaction_id

    def get_or_create_record(
        self,
        order_id: str,
        payment_method: str,
        amount: Any,
        tracked_value: Any = None,
        items: Iterable[PurchaseEventItem] = (),
    ) -> TransactionRecord:
        """Return the order's transaction record, creating it once.

        Args:
            order_id: Order identifier from the payment provider.
            payment_method: Payment method used.
            amount: Amount charged.
            tracked_value: Value to report to analytics; defaults to amount.
            items: Purchase event lines to report with the transaction.

        Raises:
            ValueError: If order_id is empty.
        """
        if not order_id:
            raise ValueError("order_id is required to derive a transaction id")

        existing = self.get_record(order_id)
        if existing is not None:
            logger.debug("Reusing transaction id %s for order %s", existing.transaction_id, order_id)
            return existing

        now = self.store.clock()
        record = TransactionRecord(
            transaction_id=self._generate_transaction_id(order_id),
            order_id=order_id,
            payment_method=payment_method or "unknown",
            amount=to_money(amount),
            tracked_value=to_money(amount if tracked_value is None else tracked_value),
            created_at=now,
            expires_at=now + self.config.transaction_ttl_seconds,
            items=list(items),
        )
        if self.store.set(self._record_key(order_id), record.to_stored(), ttl=self.config.transaction_ttl_seconds):
            self._memory_records.pop(order_id, None)
        else:
            logger.warning("Transaction record for order %s kept in memory only", order_id)
            self._memory_records[order_id] = record

        logger.info("Created transaction id %s for order %s", record.transaction_id, order_id)
        return record

    def _tracked(self) -> dict[str, TrackedPurchase]:
        """Fired purchases from storage, pruned of stale entries."""
        stored = self.store.get(StorageKey.TRACKED_PURCHASES, default={})
        if not isinstance(stored, dict):
            logger.warning("Tracked purchases entry is not a map; ignoring it")
            stored = {}
        cutoff = self.store.clock() - self.config.tracked_purchase_ttl_seconds
        tracked: dict[str, TrackedPurchase] = {}
        for txn_id, entry in {**stored, **self._memory_fired}.items():
            try:
                fired_at = float(entry.get("fired_at", 0))
            except (AttributeError, TypeError, ValueError):
                logger.warning("Dropping unreadable tracked purchase %r", txn_id)
                continue
            if fired_at > cutoff:
                tracked[txn_id] = entry
        return tracked

    def has_fired(self, transaction_id: str) -> bool:
        return transaction_id in self._tracked()

    def mark_event_fired(self, transaction_id: str, payload: PurchaseEvent) -> bool:
        """Emit the purchase event unless this transaction already fired.

        Args:
            transaction_id: Transaction to record.
            payload: Event to emit to the analytics sink.

        Returns:
            bool: True if this call emitted the event.
        """
        tracked = self._tracked()
        if transaction_id in tracked:
            logger.info("Purchase event for %s already fired; skipping", transaction_id)
            return False

        if payload.transaction_id != transaction_id:
            payload = payload.model_copy(update={"transaction_id": transaction_id})

        try:
            self.sink.emit(payload)
        except Exception as e:
            logger.error("Analytics sink failed for %s: %s", transaction_id, e)
            return False

        entry: TrackedPurchase = {
            "transaction_id": transaction_id,
            "value": money_str(payload.value),
            "currency": payload.currency,
            "item_count": len(payload.items),
            "fired_at": self.store.clock(),
        }
        tracked[transaction_id] = entry
        stored = {txn_id: value for txn_id, value in tracked.items() if txn_id not in self._memory_fired}
        if not self.store.set(
            StorageKey.TRACKED_PURCHASES, stored, ttl=self.config.tracked_purchase_ttl_seconds
        ):
            logger.warning("Fired purchase %s remembered in memory only", transaction_id)
            self._memory_fired[transaction_id] = entry
        return True

    def clear(self, order_id: str) -> None:
        """Forget the transaction record for an order."""
        self.store.remove(self._record_key(order_id))
        self._memory_records.pop(order_id, None)
