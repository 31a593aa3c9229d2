"""Checkout and purchase-event Pydantic schemas."""

from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class PurchaseEventItem(BaseModel):
    """A line in a purchase analytics event."""

    model_config = ConfigDict(frozen=True)

    item_id: str = Field(description="Product identifier")
    item_name: str = Field(default="Unknown Product", description="Product name")
    quantity: int = Field(default=1, ge=1, description="Units purchased")
    price: Decimal = Field(description="Tracked unit price")


class PurchaseEvent(BaseModel):
    """Purchase-completed analytics event."""

    model_config = ConfigDict(frozen=True)

    transaction_id: str = Field(description="Idempotent transaction identifier")
    value: Decimal = Field(description="Tracked purchase value")
    currency: str = Field(default="INR", description="ISO currency code")
    items: list[PurchaseEventItem] = Field(default_factory=list, description="Purchased items")
    tax: Decimal = Field(default=Decimal("0"), description="Tax amount")
    shipping: Decimal = Field(default=Decimal("0"), description="Shipping amount")


class CommitResponse(BaseModel):
    """Schema for POST /checkout/commit responses."""

    amount: Decimal = Field(description="Locked amount to charge")
    locked: bool = Field(default=True, description="Whether the amount is locked")


class ReleaseResponse(BaseModel):
    """Schema for POST /checkout/release responses."""

    released: bool = Field(description="Whether a lock was held and released")
    payable_amount: Decimal = Field(description="Payable amount after re-synchronizing with the cart")


class ConfirmPurchaseRequest(BaseModel):
    """Schema for confirming a paid order via POST /checkout/confirm."""

    order_id: str = Field(min_length=1, description="Order identifier from the payment provider")
    payment_method: str = Field(default="unknown", description="Payment method used")
    amount: Decimal | None = Field(
        default=None,
        gt=0,
        description="Amount the payment provider charged; used when no checkout lock survives",
    )


class PurchaseResult(BaseModel):
    """Outcome of a purchase confirmation."""

    transaction_id: str = Field(description="Idempotent transaction identifier")
    order_id: str = Field(description="Confirmed order identifier")
    amount: Decimal = Field(description="Amount charged")
    event_fired: bool = Field(description="Whether this call emitted the purchase event")
