"""Engine-level exceptions for cart pricing and checkout state."""

from decimal import Decimal


class StorefrontError(Exception):
    """Base class for cart engine errors."""


class StorageFailure(StorefrontError):
    """A storage backend could not read or write an entry.

    Raised by backends; the key-value store catches it and falls back.
    """

    def __init__(self, message: str, key: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.key = key


class InvalidLineItem(StorefrontError):
    """A product record cannot be turned into a line item."""


class LockConflict(StorefrontError):
    """An attempt to overwrite a payment amount locked for checkout."""

    def __init__(self, locked_amount: Decimal, attempted_amount: Decimal) -> None:
        super().__init__(
            f"Payment amount {locked_amount} is locked; refusing to write {attempted_amount}"
        )
        self.locked_amount = locked_amount
        self.attempted_amount = attempted_amount


class AmountAmbiguity(StorefrontError):
    """Stored amount sources disagree with each other."""

    def __init__(self, chosen: Decimal, sources: dict[str, Decimal]) -> None:
        detail = ", ".join(f"{name}={amount}" for name, amount in sources.items())
        super().__init__(f"Amount sources disagree ({detail}); using {chosen}")
        self.chosen = chosen
        self.sources = sources


class NothingToCharge(StorefrontError):
    """Checkout was requested but the payable amount is zero."""
