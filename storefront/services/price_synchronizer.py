"""Single writer of cart totals and the canonical payment amount.

The payment amount is the only value checkout may charge. While unlocked it
follows every price change; once checkout commits it is locked and price
changes no longer move it until it is released. On page load the amount is
re-derived from storage by precedence, never by averaging sources.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Callable

from storefront.core.exceptions import AmountAmbiguity, LockConflict, NothingToCharge
from storefront.core.money import ZERO, money_str, to_money
from storefront.core.storage import KeyValueStore, StorageKey
from storefront.models.payment import StoredPaymentAmount
from storefront.schemas.cart import PriceSnapshot

logger = logging.getLogger(__name__)

TOTAL_KEYS = (
    StorageKey.TOTAL_MRP,
    StorageKey.TOTAL_DISCOUNT,
    StorageKey.TOTAL_EXTRA_DISCOUNT,
    StorageKey.TOTAL_PRICE,
)


class AmountSource(str, Enum):
    """Where a reconciled payable amount came from, highest confidence first."""

    LOCKED = "locked"
    LIVE = "live"
    STORED = "stored"
    NONE = "none"


@dataclass
class PaymentAmountRecord:
    """The canonical amount checkout charges."""

    amount: Decimal
    locked: bool
    source: str
    updated_at: float

    @property
    def rederivable(self) -> bool:
        """Unlocked amounts follow price changes."""
        return not self.locked

    def to_stored(self) -> StoredPaymentAmount:
        return {
            "amount": money_str(self.amount),
            "locked": self.locked,
            "source": self.source,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_stored(cls, raw: Any) -> "PaymentAmountRecord | None":
        """Parse a stored record; None if it is not usable."""
        if not isinstance(raw, dict):
            return None
        amount = to_money(raw.get("amount"))
        if amount <= 0:
            return None
        return cls(
            amount=amount,
            locked=bool(raw.get("locked", False)),
            source=str(raw.get("source", "unknown")),
            updated_at=float(raw.get("updated_at") or 0),
        )


@dataclass
class ReconcileResult:
    """Consistent view re-derived from storage."""

    snapshot: PriceSnapshot
    payable: Decimal
    source: AmountSource
    ambiguous: bool = False


@dataclass
class PriceSynchronizerConfig:
    """Configuration for the price synchronizer."""

    lock_ttl_seconds: int = 1800  # abandoned checkouts unlock after 30 minutes

    @classmethod
    def from_settings(cls) -> "PriceSynchronizerConfig":
        """Create config from application settings."""
        from storefront.core.config import get_settings
        settings = get_settings()
        return cls(lock_ttl_seconds=settings.checkout_lock_ttl_seconds)


class PriceSynchronizer:
    """Owns the stored totals and the payment amount record."""

    def __init__(
        self,
        store: KeyValueStore,
        snapshot_provider: Callable[[], PriceSnapshot],
        config: PriceSynchronizerConfig | None = None,
    ) -> None:
        """Initialize the synchronizer.

        Args:
            store: Namespaced key-value store.
            snapshot_provider: Recomputes the live snapshot from the current
                ledger and eligibility.
            config: Optional synchronizer configuration.
        """
        self.store = store
        self.snapshot_provider = snapshot_provider
        self.config = config or PriceSynchronizerConfig()
        # Used only while the store refuses writes
        self._fallback_record: PaymentAmountRecord | None = None

    def payment_amount(self) -> PaymentAmountRecord | None:
        """Read the current payment amount record.

        A record held in memory after a refused write is newer than anything
        in storage and wins.
        """
        if self._fallback_record is not None:
            record = self._fallback_record
            if record.locked and self.store.clock() > record.updated_at + self.config.lock_ttl_seconds:
                logger.info("In-memory checkout lock expired")
                self._fallback_record = None
            else:
                return record

        raw = self.store.get(StorageKey.PAYMENT_AMOUNT)
        if raw is None:
            return None
        record = PaymentAmountRecord.from_stored(raw)
        if record is None:
            logger.warning("Ignoring unusable payment amount record %r", raw)
        return record

    @property
    def is_locked(self) -> bool:
        record = self.payment_amount()
        return record is not None and record.locked

    def _save_record(self, record: PaymentAmountRecord) -> None:
        ttl = self.config.lock_ttl_seconds if record.locked else None
        if self.store.set(StorageKey.PAYMENT_AMOUNT, record.to_stored(), ttl=ttl):
            self._fallback_record = None
        else:
            logger.warning("Payment amount kept in memory only: %s", record.amount)
            # The stored record is now stale; other tabs must not charge it
            self.store.remove(StorageKey.PAYMENT_AMOUNT)
            self._fallback_record = record

    def _write_payment_amount(self, amount: Decimal, source: str) -> PaymentAmountRecord | None:
        """Set the unlocked amount.

        Raises:
            LockConflict: If a locked record holds a different amount.
        """
        current = self.payment_amount()
        if current is not None and current.locked:
            if current.amount != amount:
                raise LockConflict(current.amount, amount)
            return current

        if amount <= 0:
            self.store.remove(StorageKey.PAYMENT_AMOUNT)
            self._fallback_record = None
            return None

        record = PaymentAmountRecord(amount=amount, locked=False, source=source, updated_at=self.store.clock())
        self._save_record(record)
        return record

    def _write_totals(self, snapshot: PriceSnapshot) -> None:
        values = (
            snapshot.total_mrp,
            snapshot.total_discount,
            snapshot.extra_discount,
            snapshot.final_payable,
        )
        for key, value in zip(TOTAL_KEYS, values):
            if not self.store.set(key, money_str(value)):
                logger.warning("Could not persist %s", key.value)

    def on_snapshot_changed(self, snapshot: PriceSnapshot) -> None:
        """Persist new totals and follow them with the unlocked amount.

        A locked amount is left untouched.
        """
        self._write_totals(snapshot)
        try:
            self._write_payment_amount(snapshot.final_payable, source="cart")
        except LockConflict as e:
            logger.warning("Lock conflict ignored: %s", e)

    def commit_for_checkout(self) -> Decimal:
        """Lock and return the amount checkout must charge.

        Returns:
            Decimal: The locked amount; repeated calls return the same value.

        Raises:
            NothingToCharge: If there is no positive amount to lock.
        """
        record = self.payment_amount()
        if record is not None and record.locked:
            return record.amount

        if record is not None:
            amount = record.amount
        else:
            amount = self.snapshot_provider().final_payable
            logger.info("No payment amount stored; re-derived %s from the cart", amount)

        if amount <= 0:
            raise NothingToCharge("Cart has nothing to charge")

        locked = PaymentAmountRecord(amount=amount, locked=True, source="checkout", updated_at=self.store.clock())
        self._save_record(locked)
        logger.info("Payment amount %s locked for checkout", amount)
        return amount

    def release(self) -> None:
        """Unlock and clear the payment amount."""
        self.store.remove(StorageKey.PAYMENT_AMOUNT)
        self._fallback_record = None
        logger.info("Payment amount released")

    def clear_totals(self) -> None:
        """Remove the stored totals."""
        for key in TOTAL_KEYS:
            self.store.remove(key)

    def stored_snapshot(self) -> PriceSnapshot:
        """Snapshot rebuilt from the per-field total keys."""
        total_mrp = to_money(self.store.get(StorageKey.TOTAL_MRP))
        total_discount = to_money(self.store.get(StorageKey.TOTAL_DISCOUNT))
        return PriceSnapshot(
            total_mrp=total_mrp,
            total_discounted_price=max(ZERO, total_mrp - total_discount),
            extra_discount=to_money(self.store.get(StorageKey.TOTAL_EXTRA_DISCOUNT)),
            final_payable=to_money(self.store.get(StorageKey.TOTAL_PRICE)),
        )

    def _flag_ambiguity(self, chosen: Decimal, sources: dict[str, Decimal]) -> bool:
        positive = {name: amount for name, amount in sources.items() if amount > 0}
        if any(amount != chosen for amount in positive.values()):
            logger.warning("%s", AmountAmbiguity(chosen, positive))
            return True
        return False

    def reconcile_from_storage(self) -> ReconcileResult:
        """Re-derive a consistent view after a page load or tab switch.

        Precedence: a locked amount, then a live recomputation from the
        ledger, then a previously stored amount, then zero.
        """
        record = self.payment_amount()
        live = self.snapshot_provider()
        stored_total = to_money(self.store.get(StorageKey.TOTAL_PRICE))
        sources = {
            "payment_amount": record.amount if record else ZERO,
            "live": live.final_payable,
            "stored_total": stored_total,
        }

        if record is not None and record.locked:
            self._write_totals(live)
            ambiguous = self._flag_ambiguity(record.amount, {"live": live.final_payable})
            return ReconcileResult(live, record.amount, AmountSource.LOCKED, ambiguous)

        if live.final_payable > 0:
            ambiguous = self._flag_ambiguity(live.final_payable, sources)
            self.on_snapshot_changed(live)
            return ReconcileResult(live, live.final_payable, AmountSource.LIVE, ambiguous)

        for name in ("payment_amount", "stored_total"):
            amount = sources[name]
            if amount > 0:
                ambiguous = self._flag_ambiguity(amount, sources)
                logger.info("Cart is empty; falling back to stored %s %s", name, amount)
                return ReconcileResult(self.stored_snapshot(), amount, AmountSource.STORED, ambiguous)

        return ReconcileResult(live, ZERO, AmountSource.NONE)
