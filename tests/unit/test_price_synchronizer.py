"""Unit tests for the price synchronizer."""

from decimal import Decimal

import pytest

from storefront.core.exceptions import NothingToCharge
from storefront.core.storage import InMemoryStorageBackend, KeyValueStore, StorageKey
from storefront.schemas.cart import PriceSnapshot
from storefront.services.price_synchronizer import (
    AmountSource,
    PaymentAmountRecord,
    PriceSynchronizer,
    PriceSynchronizerConfig,
)


def _snapshot(payable: str, mrp: str | None = None, extra: str = "0") -> PriceSnapshot:
    final = Decimal(payable)
    extra_discount = Decimal(extra)
    return PriceSnapshot(
        total_mrp=Decimal(mrp) if mrp is not None else final + extra_discount,
        total_discounted_price=final + extra_discount,
        extra_discount=extra_discount,
        final_payable=final,
    )


def _used_bytes(backend: InMemoryStorageBackend) -> int:
    return sum(len(key) + len(backend.get_item(key)) for key in backend.item_keys())


class LiveCart:
    """Mutable stand-in for the live cart snapshot."""

    def __init__(self, snapshot: PriceSnapshot | None = None) -> None:
        self.snapshot = snapshot or PriceSnapshot.empty()

    def __call__(self) -> PriceSnapshot:
        return self.snapshot


@pytest.fixture
def live() -> LiveCart:
    """Provide the live snapshot holder."""
    return LiveCart()


@pytest.fixture
def synchronizer(store: KeyValueStore, live: LiveCart) -> PriceSynchronizer:
    """Provide a synchronizer over the test store."""
    return PriceSynchronizer(store, live)


class TestOnSnapshotChanged:
    """Tests for PriceSynchronizer.on_snapshot_changed."""

    def test_writes_totals_and_payment_amount(self, synchronizer: PriceSynchronizer, store: KeyValueStore) -> None:
        """Test that totals land under their keys as strings."""
        synchronizer.on_snapshot_changed(_snapshot("650", mrp="800", extra="100"))

        assert store.get(StorageKey.TOTAL_MRP) == "800.00"
        assert store.get(StorageKey.TOTAL_DISCOUNT) == "50.00"
        assert store.get(StorageKey.TOTAL_EXTRA_DISCOUNT) == "100.00"
        assert store.get(StorageKey.TOTAL_PRICE) == "650.00"
        record = synchronizer.payment_amount()
        assert record is not None
        assert record.amount == Decimal("650.00")
        assert record.locked is False
        assert record.rederivable is True

    def test_unlocked_amount_follows_changes(self, synchronizer: PriceSynchronizer) -> None:
        """Test that re-derivable amounts are overwritten."""
        synchronizer.on_snapshot_changed(_snapshot("650"))
        synchronizer.on_snapshot_changed(_snapshot("300"))

        assert synchronizer.payment_amount().amount == Decimal("300.00")

    def test_zero_amount_removes_unlocked_record(self, synchronizer: PriceSynchronizer, store: KeyValueStore) -> None:
        """Test that an emptied cart leaves no chargeable amount."""
        synchronizer.on_snapshot_changed(_snapshot("650"))
        synchronizer.on_snapshot_changed(PriceSnapshot.empty())

        assert synchronizer.payment_amount() is None
        assert store.get(StorageKey.PAYMENT_AMOUNT) is None

    def test_locked_amount_is_not_overwritten(
        self, synchronizer: PriceSynchronizer, live: LiveCart, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Test that a stray change cannot move a locked amount."""
        live.snapshot = _snapshot("650")
        synchronizer.on_snapshot_changed(live.snapshot)
        synchronizer.commit_for_checkout()

        synchronizer.on_snapshot_changed(_snapshot("999"))

        assert synchronizer.payment_amount().amount == Decimal("650.00")
        assert synchronizer.payment_amount().locked is True
        assert "Lock conflict" in caplog.text


class TestCommitAndRelease:
    """Tests for commit_for_checkout and release."""

    def test_commit_locks_existing_amount(self, synchronizer: PriceSynchronizer, live: LiveCart) -> None:
        """Test that commit locks the stored unlocked amount."""
        live.snapshot = _snapshot("650")
        synchronizer.on_snapshot_changed(live.snapshot)

        assert synchronizer.commit_for_checkout() == Decimal("650.00")
        assert synchronizer.is_locked is True

    def test_lock_invariance_until_release(self, synchronizer: PriceSynchronizer, live: LiveCart) -> None:
        """Test that commit keeps returning the locked amount until release."""
        live.snapshot = _snapshot("650")
        synchronizer.on_snapshot_changed(live.snapshot)
        first = synchronizer.commit_for_checkout()

        live.snapshot = _snapshot("120")
        synchronizer.on_snapshot_changed(live.snapshot)
        assert synchronizer.commit_for_checkout() == first

        synchronizer.release()
        synchronizer.on_snapshot_changed(live.snapshot)
        assert synchronizer.commit_for_checkout() == Decimal("120.00")

    def test_commit_without_record_rederives_from_cart(self, synchronizer: PriceSynchronizer, live: LiveCart) -> None:
        """Test the fallback when no payment amount is stored."""
        live.snapshot = _snapshot("410")

        assert synchronizer.commit_for_checkout() == Decimal("410.00")
        assert synchronizer.payment_amount().source == "checkout"

    def test_commit_with_nothing_to_charge_raises(self, synchronizer: PriceSynchronizer) -> None:
        """Test that a zero amount is never locked."""
        with pytest.raises(NothingToCharge):
            synchronizer.commit_for_checkout()
        assert synchronizer.payment_amount() is None

    def test_lock_expires_after_ttl(self, store: KeyValueStore, live: LiveCart, clock) -> None:
        """Test that an abandoned lock lapses and the amount re-derives."""
        synchronizer = PriceSynchronizer(store, live, PriceSynchronizerConfig(lock_ttl_seconds=60))
        live.snapshot = _snapshot("650")
        synchronizer.on_snapshot_changed(live.snapshot)
        synchronizer.commit_for_checkout()

        clock.advance(61)
        live.snapshot = _snapshot("500")

        assert synchronizer.is_locked is False
        assert synchronizer.commit_for_checkout() == Decimal("500.00")

    def test_release_removes_record(self, synchronizer: PriceSynchronizer, live: LiveCart) -> None:
        """Test release()."""
        live.snapshot = _snapshot("650")
        synchronizer.commit_for_checkout()

        synchronizer.release()

        assert synchronizer.payment_amount() is None
        assert synchronizer.is_locked is False

    def test_clear_totals_removes_every_total(self, synchronizer: PriceSynchronizer, store: KeyValueStore) -> None:
        """Test clear_totals()."""
        synchronizer.on_snapshot_changed(_snapshot("650"))

        synchronizer.clear_totals()

        assert store.keys() == ["payment_amount"]

    def test_failed_write_keeps_record_in_memory(self, clock, live: LiveCart) -> None:
        """Test the in-memory fallback when storage refuses writes."""
        store = KeyValueStore(InMemoryStorageBackend(quota_bytes=0), clock=clock)
        synchronizer = PriceSynchronizer(store, live)
        live.snapshot = _snapshot("650")

        assert synchronizer.commit_for_checkout() == Decimal("650.00")
        assert synchronizer.is_locked is True

    def test_refused_lock_write_is_not_hidden_by_stale_record(self, clock, live: LiveCart) -> None:
        """Test that an older stored record cannot shadow the in-memory lock."""
        backend = InMemoryStorageBackend()
        store = KeyValueStore(backend, clock=clock)
        synchronizer = PriceSynchronizer(store, live)
        live.snapshot = _snapshot("100")
        synchronizer.on_snapshot_changed(live.snapshot)
        backend.quota_bytes = _used_bytes(backend) + 2

        first = synchronizer.commit_for_checkout()
        live.snapshot = _snapshot("1000")
        synchronizer.on_snapshot_changed(live.snapshot)
        second = synchronizer.commit_for_checkout()

        assert first == second == Decimal("100.00")
        assert synchronizer.is_locked is True
        assert synchronizer.payment_amount().amount == Decimal("100.00")
        assert store.get(StorageKey.PAYMENT_AMOUNT) is None

    def test_refused_unlocked_write_follows_the_cart(self, clock, live: LiveCart) -> None:
        """Test that checkout charges the newest amount when storage is full."""
        backend = InMemoryStorageBackend()
        store = KeyValueStore(backend, clock=clock)
        synchronizer = PriceSynchronizer(store, live)
        synchronizer.on_snapshot_changed(_snapshot("100"))
        backend.quota_bytes = _used_bytes(backend)

        live.snapshot = _snapshot("1000")
        synchronizer.on_snapshot_changed(live.snapshot)

        assert synchronizer.commit_for_checkout() == Decimal("1000.00")
        assert synchronizer.is_locked is True

    def test_in_memory_lock_expires(self, clock, live: LiveCart) -> None:
        """Test that a lock held only in memory still honours its TTL."""
        store = KeyValueStore(InMemoryStorageBackend(quota_bytes=0), clock=clock)
        synchronizer = PriceSynchronizer(store, live, PriceSynchronizerConfig(lock_ttl_seconds=60))
        live.snapshot = _snapshot("650")
        synchronizer.commit_for_checkout()

        clock.advance(61)

        assert synchronizer.is_locked is False

    def test_unusable_stored_record_is_ignored(self, synchronizer: PriceSynchronizer, store: KeyValueStore) -> None:
        """Test that a stored record without a positive amount is treated as absent."""
        store.set(StorageKey.PAYMENT_AMOUNT, {"amount": "0", "locked": True})

        assert synchronizer.payment_amount() is None
        assert PaymentAmountRecord.from_stored("650") is None


class TestReconcileFromStorage:
    """Tests for reconcile_from_storage."""

    def test_round_trip_after_reload(self, store: KeyValueStore, live: LiveCart) -> None:
        """Test that a reloaded synchronizer reproduces the payable amount."""
        live.snapshot = _snapshot("650", mrp="750", extra="100")
        PriceSynchronizer(store, live).on_snapshot_changed(live.snapshot)

        result = PriceSynchronizer(store, live).reconcile_from_storage()

        assert result.payable == Decimal("650.00")
        assert result.source is AmountSource.LIVE
        assert result.ambiguous is False

    def test_locked_amount_wins(self, synchronizer: PriceSynchronizer, live: LiveCart, store: KeyValueStore) -> None:
        """Test that a locked amount outranks the live cart."""
        live.snapshot = _snapshot("650")
        synchronizer.commit_for_checkout()
        live.snapshot = _snapshot("700")

        result = synchronizer.reconcile_from_storage()

        assert result.payable == Decimal("650.00")
        assert result.source is AmountSource.LOCKED
        assert result.ambiguous is True
        assert store.get(StorageKey.TOTAL_PRICE) == "700.00"

    def test_live_cart_outranks_stale_stored_amount(
        self, synchronizer: PriceSynchronizer, live: LiveCart, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Test that the live recomputation wins and is re-synchronized."""
        synchronizer.on_snapshot_changed(_snapshot("650"))
        live.snapshot = _snapshot("400")

        result = synchronizer.reconcile_from_storage()

        assert result.payable == Decimal("400.00")
        assert result.source is AmountSource.LIVE
        assert result.ambiguous is True
        assert synchronizer.payment_amount().amount == Decimal("400.00")
        assert "disagree" in caplog.text

    def test_empty_cart_falls_back_to_stored_amount(self, synchronizer: PriceSynchronizer, live: LiveCart) -> None:
        """Test that a positive stored amount is never replaced by zero."""
        synchronizer.on_snapshot_changed(_snapshot("650", mrp="750", extra="100"))

        result = synchronizer.reconcile_from_storage()

        assert result.payable == Decimal("650.00")
        assert result.source is AmountSource.STORED
        assert result.snapshot.total_mrp == Decimal("750.00")
        assert result.snapshot.extra_discount == Decimal("100.00")

    def test_stored_total_is_last_resort(self, synchronizer: PriceSynchronizer, store: KeyValueStore) -> None:
        """Test the stored total price fallback."""
        store.set(StorageKey.TOTAL_PRICE, "275.00")

        result = synchronizer.reconcile_from_storage()

        assert result.payable == Decimal("275.00")
        assert result.source is AmountSource.STORED

    def test_nothing_anywhere_is_zero(self, synchronizer: PriceSynchronizer) -> None:
        """Test reconciliation of an empty namespace."""
        result = synchronizer.reconcile_from_storage()

        assert result.payable == Decimal("0")
        assert result.source is AmountSource.NONE
