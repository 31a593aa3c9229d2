"""Cart line-item ledger persisted to the key-value store."""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping

from pydantic import ValidationError

from storefront.core.exceptions import InvalidLineItem
from storefront.core.storage import KeyValueStore, StorageKey
from storefront.models.cart import StoredLineItem
from storefront.schemas.cart import DEFAULT_SIZE, LineItem, Size
from storefront.services.cart_expiration import CartExpirationMonitor

logger = logging.getLogger(__name__)

LedgerListener = Callable[[list[LineItem]], None]


@dataclass
class CartLedgerConfig:
    """Configuration for the cart ledger."""

    items_ttl_seconds: int = 604800  # 7 days

    @classmethod
    def from_settings(cls) -> "CartLedgerConfig":
        """Create config from application settings."""
        from storefront.core.config import get_settings
        settings = get_settings()
        return cls(items_ttl_seconds=settings.cart_items_ttl_seconds)


class CartLedger:
    """Ordered cart line items, unique by product id."""

    def __init__(
        self,
        store: KeyValueStore,
        monitor: CartExpirationMonitor,
        config: CartLedgerConfig | None = None,
    ) -> None:
        """Initialize the ledger. Items are read from storage on first access.

        Args:
            store: Namespaced key-value store.
            monitor: Expiration monitor for this cart.
            config: Optional ledger configuration.
        """
        self.store = store
        self.monitor = monitor
        self.config = config or CartLedgerConfig()
        self._listeners: list[LedgerListener] = []
        self._items: list[LineItem] = []
        self._loaded = False
        self.monitor.on_expired(self._on_expired)

    def subscribe(self, listener: LedgerListener) -> None:
        """Register a callback receiving the item list after every change."""
        self._listeners.append(listener)

    def _notify(self) -> None:
        snapshot = list(self._items)
        for listener in self._listeners:
            listener(snapshot)

    def _load(self) -> list[LineItem]:
        stored = self.store.get(StorageKey.CART_ITEMS, default=[])
        if not isinstance(stored, list):
            logger.warning("Stored cart is not a list; starting empty")
            return []

        items: list[LineItem] = []
        for raw in stored:
            try:
                items.append(LineItem.model_validate(raw))
            except ValidationError as e:
                logger.warning("Dropping unreadable stored line item %r: %s", raw, e.errors()[0]["msg"])
        return self._dedupe(items)

    def _persist(self) -> None:
        payload: list[StoredLineItem] = [item.model_dump(mode="json") for item in self._items]
        if self._items:
            if not self.store.set(StorageKey.CART_ITEMS, payload, ttl=self.config.items_ttl_seconds):
                logger.warning("Cart could not be persisted; keeping %d items in memory", len(self._items))
        else:
            self.store.remove(StorageKey.CART_ITEMS)
        self.monitor.touch(bool(self._items))

    @staticmethod
    def _dedupe(items: Iterable[LineItem]) -> list[LineItem]:
        """Collapse repeated product ids: last value, first position."""
        merged: dict[str, LineItem] = {}
        for item in items:
            merged[item.product_id] = item
        return list(merged.values())

    def _commit(self, items: list[LineItem]) -> list[LineItem]:
        self._items = items
        self._loaded = True
        self._persist()
        self._notify()
        return list(self._items)

    def _on_expired(self) -> None:
        self._items = []
        self._loaded = True
        self.store.remove(StorageKey.CART_ITEMS)
        self._notify()

    @property
    def items(self) -> list[LineItem]:
        """Current items, after the lazy expiry check."""
        if not self.monitor.check() and not self._loaded:
            self._items = self._load()
            self._loaded = True
        return list(self._items)

    def reload(self) -> list[LineItem]:
        """Re-read the ledger from storage, discarding in-memory state."""
        self._loaded = False
        return self.items

    def find(self, product_id: str) -> LineItem | None:
        return next((item for item in self.items if item.product_id == product_id), None)

    def add_or_update(
        self,
        product: LineItem | Mapping[str, Any],
        quantity: Any = None,
        size: Size | str | None = None,
    ) -> list[LineItem]:
        """Add a product, or replace its quantity and size if present.

        Args:
            product: Line item or raw upstream product record.
            quantity: Units to hold; defaults to the product's own quantity.
            size: Selected size; defaults to the product's own size, then M.

        Returns:
            list[LineItem]: The resulting ledger.

        Raises:
            InvalidLineItem: If a raw record carries no product id.
        """
        if isinstance(product, LineItem):
            incoming = product
        else:
            incoming = LineItem.from_product(product)
        incoming = incoming.with_selection(
            quantity if quantity is not None else incoming.quantity,
            size if size is not None else (incoming.size or DEFAULT_SIZE),
        )

        items = self.items
        for index, existing in enumerate(items):
            if existing.product_id == incoming.product_id:
                items[index] = existing.with_selection(incoming.quantity, incoming.size)
                logger.debug("Updated cart item %s", incoming.product_id)
                return self._commit(items)

        items.append(incoming)
        logger.debug("Added cart item %s", incoming.product_id)
        return self._commit(items)

    def remove(self, product_id: str) -> list[LineItem]:
        """Remove a product; absent ids are a no-op."""
        items = self.items
        remaining = [item for item in items if item.product_id != product_id]
        if len(remaining) == len(items):
            return items
        return self._commit(remaining)

    def clear(self) -> None:
        """Empty the ledger."""
        self._commit([])

    def set_all(self, items: Iterable[LineItem | Mapping[str, Any]]) -> list[LineItem]:
        """Replace the whole ledger.

        Raw records without a product id are skipped with a warning.
        """
        self.items  # runs the expiry check before the cart is replaced
        normalized: list[LineItem] = []
        for item in items:
            if isinstance(item, LineItem):
                normalized.append(item)
                continue
            try:
                normalized.append(LineItem.from_product(item))
            except InvalidLineItem as e:
                logger.warning("Skipping product in bulk replace: %s", e)
        return self._commit(self._dedupe(normalized))
