"""Sliding-window cart expiration.

The lazy check on access is the source of truth. The countdown task only
feeds a display and may lag or stop without affecting expiry.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from storefront.core.storage import KeyValueStore, StorageKey

logger = logging.getLogger(__name__)

# Countdown thresholds in seconds
URGENT_THRESHOLD_SECONDS = 180
CRITICAL_THRESHOLD_SECONDS = 60


class CartState(str, Enum):
    """Lifecycle of a cart reservation."""

    EMPTY = "empty"
    ACTIVE = "active"
    EXPIRED = "expired"


class Urgency(str, Enum):
    """Countdown display level."""

    NORMAL = "normal"
    URGENT = "urgent"
    CRITICAL = "critical"
    EXPIRED = "expired"


@dataclass
class CartExpirationConfig:
    """Configuration for cart expiration."""

    ttl_seconds: int = 420  # 7 minutes
    countdown_interval_seconds: float = 1.0

    @classmethod
    def from_settings(cls) -> "CartExpirationConfig":
        """Create config from application settings."""
        from storefront.core.config import get_settings
        settings = get_settings()
        return cls(ttl_seconds=settings.cart_ttl_seconds)


class CartExpirationMonitor:
    """Tracks the cart's expiry timestamp and clears state once it passes."""

    def __init__(self, store: KeyValueStore, config: CartExpirationConfig | None = None) -> None:
        """Initialize the monitor.

        Args:
            store: Namespaced key-value store holding the expiry.
            config: Optional expiration configuration.
        """
        self.store = store
        self.config = config or CartExpirationConfig()
        self._handlers: list[Callable[[], None]] = []
        self._expiring = False
        self._countdown_task: asyncio.Task | None = None

    def on_expired(self, handler: Callable[[], None]) -> None:
        """Register a callback run when the cart expires."""
        self._handlers.append(handler)

    def expires_at(self) -> float | None:
        """Epoch seconds at which the cart lapses, or None when empty."""
        value = self.store.get(StorageKey.CART_EXPIRES_AT)
        try:
            return float(value) if value is not None else None
        except (TypeError, ValueError):
            logger.warning("Ignoring unreadable cart expiry %r", value)
            return None

    def state(self) -> CartState:
        """Current state, without side effects."""
        expires_at = self.expires_at()
        if expires_at is None:
            return CartState.EMPTY
        if self.store.clock() > expires_at:
            return CartState.EXPIRED
        return CartState.ACTIVE

    def touch(self, has_items: bool) -> None:
        """Refresh the window after a ledger mutation.

        Args:
            has_items: Whether the ledger is non-empty after the mutation.
        """
        if not has_items:
            self.store.remove(StorageKey.CART_EXPIRES_AT)
            return
        expires_at = self.store.clock() + self.config.ttl_seconds
        if not self.store.set(StorageKey.CART_EXPIRES_AT, expires_at):
            logger.warning("Could not persist cart expiry; cart will not expire until next write")

    def check(self) -> bool:
        """Expire the cart if its window has passed.

        Returns:
            bool: True if the cart was expired by this call.
        """
        if self._expiring or self.state() is not CartState.EXPIRED:
            return False

        self._expiring = True
        try:
            logger.info("Cart expired; clearing cart state")
            self.store.remove(StorageKey.CART_EXPIRES_AT)
            for handler in self._handlers:
                handler()
        finally:
            self._expiring = False
        return True

    def remaining_seconds(self) -> int:
        """Whole seconds left in the window; 0 when empty or expired."""
        expires_at = self.expires_at()
        if expires_at is None:
            return 0
        return max(0, int(expires_at - self.store.clock()))

    def urgency(self) -> Urgency:
        """Display level for the countdown."""
        state = self.state()
        if state is CartState.EXPIRED:
            return Urgency.EXPIRED
        if state is CartState.EMPTY:
            return Urgency.NORMAL
        remaining = self.remaining_seconds()
        if remaining <= CRITICAL_THRESHOLD_SECONDS:
            return Urgency.CRITICAL
        if remaining <= URGENT_THRESHOLD_SECONDS:
            return Urgency.URGENT
        return Urgency.NORMAL

    async def start_countdown_task(self, on_tick: Callable[[int, Urgency], None]) -> None:
        """Start the background countdown feeding a display."""
        if self._countdown_task is None:
            self._countdown_task = asyncio.create_task(self._countdown_loop(on_tick))
            logger.debug("Cart countdown task started")

    async def stop_countdown_task(self) -> None:
        """Stop the background countdown."""
        if self._countdown_task:
            self._countdown_task.cancel()
            try:
                await self._countdown_task
            except asyncio.CancelledError:
                pass
            self._countdown_task = None
            logger.debug("Cart countdown task stopped")

    async def _countdown_loop(self, on_tick: Callable[[int, Urgency], None]) -> None:
        """Report the remaining time until the cart empties."""
        while True:
            self.check()
            remaining = self.remaining_seconds()
            on_tick(remaining, self.urgency())
            if self.state() is CartState.EMPTY:
                return
            await asyncio.sleep(self.config.countdown_interval_seconds)
