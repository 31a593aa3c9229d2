"""Cart Pydantic schemas: line items, price snapshots and cart API models."""

import logging
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

from storefront.core.exceptions import InvalidLineItem
from storefront.core.money import ZERO, to_money

logger = logging.getLogger(__name__)

# Upstream product fields, in precedence order
_ID_FIELDS = ("_id", "id", "product_id")
_UNIT_PRICE_FIELDS = ("mrp", "originalPrice", "regularPrice", "unit_price", "price")
_DISCOUNTED_PRICE_FIELDS = ("discount", "salePrice", "discountedPrice", "unit_discounted_price")
_NAME_FIELDS = ("name", "title")


class Size(str, Enum):
    """Garment sizes offered by the size selector."""

    XS = "XS"
    S = "S"
    M = "M"
    L = "L"
    XL = "XL"
    XXL = "XXL"


DEFAULT_SIZE = Size.M


def _first_positive(raw: Mapping[str, Any], fields: tuple[str, ...]) -> Decimal | None:
    for name in fields:
        amount = to_money(raw.get(name))
        if amount > 0:
            return amount
    return None


class LineItem(BaseModel):
    """A single product line in the cart.

    Construction sanitizes instead of rejecting: a broken line must never
    block browsing. Bad prices become 0, a bad quantity becomes 1 and a
    discounted price above the unit price is clamped to it.
    """

    model_config = ConfigDict(frozen=True)

    product_id: str = Field(min_length=1, description="Opaque product identifier")
    name: str | None = Field(default=None, description="Display name, used in analytics")
    unit_price: Decimal = Field(default=ZERO, description="MRP per unit")
    unit_discounted_price: Decimal = Field(default=ZERO, description="Offer price per unit")
    quantity: int = Field(default=1, ge=1, description="Units of this product")
    size: Size | None = Field(default=None, description="Selected size")

    @model_validator(mode="before")
    @classmethod
    def sanitize(cls, data: Any) -> Any:
        """Coerce prices, quantity and size to safe values."""
        if not isinstance(data, Mapping):
            return data
        data = dict(data)
        product_id = data.get("product_id")

        unit_price = to_money(data.get("unit_price"))
        raw_discounted = data.get("unit_discounted_price")
        discounted = unit_price if raw_discounted is None else to_money(raw_discounted)
        if discounted > unit_price:
            logger.warning(
                "Line item %s discounted price %s exceeds unit price %s; clamping",
                product_id, discounted, unit_price,
            )
            discounted = unit_price
        data["unit_price"] = unit_price
        data["unit_discounted_price"] = discounted

        try:
            quantity = int(data.get("quantity", 1))
        except (TypeError, ValueError):
            quantity = 0
        if quantity < 1:
            logger.warning("Line item %s has invalid quantity %r; using 1", product_id, data.get("quantity"))
            quantity = 1
        data["quantity"] = quantity

        size = data.get("size")
        if size is not None and not isinstance(size, Size):
            try:
                data["size"] = Size(str(size).upper())
            except ValueError:
                logger.warning("Line item %s has unknown size %r; dropping it", product_id, size)
                data["size"] = None
        return data

    @classmethod
    def from_product(
        cls,
        raw: Mapping[str, Any],
        quantity: Any = None,
        size: Size | str | None = None,
    ) -> "LineItem":
        """Map an upstream product record into a line item.

        Upstream records carry any of several price fields; the first
        positive one wins for each of the MRP and the offer price.

        Args:
            raw: Product record as received from the catalogue.
            quantity: Overrides the record's quantity when given.
            size: Overrides the record's size when given.

        Returns:
            LineItem: The normalized item.

        Raises:
            InvalidLineItem: If the record carries no product id.
        """
        product_id = next((str(raw[f]) for f in _ID_FIELDS if raw.get(f)), None)
        if not product_id:
            raise InvalidLineItem("Product record has no id")

        unit_price = _first_positive(raw, _UNIT_PRICE_FIELDS)
        discounted = _first_positive(raw, _DISCOUNTED_PRICE_FIELDS)
        if unit_price is None:
            # Records carrying only an offer price are priced at it.
            unit_price = discounted or ZERO

        return cls(
            product_id=product_id,
            name=next((str(raw[f]) for f in _NAME_FIELDS if raw.get(f)), None),
            unit_price=unit_price,
            unit_discounted_price=discounted if discounted is not None else unit_price,
            quantity=quantity if quantity is not None else raw.get("quantity", 1),
            size=size if size is not None else (raw.get("size") or raw.get("selectSize")),
        )

    def with_selection(self, quantity: Any, size: Size | str | None) -> "LineItem":
        """Return a copy with a new quantity and size, re-sanitized."""
        return LineItem(**{**self.model_dump(), "quantity": quantity, "size": size})


class PriceSnapshot(BaseModel):
    """Totals derived from the cart; never edited by hand."""

    model_config = ConfigDict(frozen=True)

    total_mrp: Decimal = Field(default=ZERO, description="Sum of unit price x quantity")
    total_discounted_price: Decimal = Field(default=ZERO, description="Sum of effective price x quantity")
    extra_discount: Decimal = Field(default=ZERO, description="Group promotion discount")
    final_payable: Decimal = Field(default=ZERO, description="Amount to charge")

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_discount(self) -> Decimal:
        """Regular (non-promotional) discount."""
        return self.total_mrp - self.total_discounted_price

    @classmethod
    def empty(cls) -> "PriceSnapshot":
        return cls()


class AddItemRequest(BaseModel):
    """Schema for adding a product via POST /cart/items.

    Prices are taken as sent. The caller is trusted to quote catalogue
    prices; nothing here checks them against a price list.
    """

    product_id: str = Field(min_length=1, description="Product identifier")
    name: str | None = Field(default=None, description="Product name")
    unit_price: Decimal = Field(description="MRP per unit")
    unit_discounted_price: Decimal | None = Field(default=None, description="Offer price per unit")
    quantity: int = Field(default=1, description="Units to hold")
    size: Size = Field(default=DEFAULT_SIZE, description="Selected size")


class UpdateItemRequest(BaseModel):
    """Schema for changing quantity/size via PATCH /cart/items/{product_id}."""

    quantity: int = Field(description="New quantity")
    size: Size | None = Field(default=None, description="New size; keeps the current one when omitted")


class SetItemsRequest(BaseModel):
    """Schema for replacing the whole cart via PUT /cart/items."""

    items: list[AddItemRequest] = Field(default_factory=list, description="Replacement items")


class CartResponse(BaseModel):
    """Schema for cart API responses."""

    items: list[LineItem] = Field(description="Cart line items in insertion order")
    snapshot: PriceSnapshot = Field(description="Derived totals")
    payable_amount: Decimal = Field(description="Canonical amount checkout will charge")
    checkout_locked: bool = Field(description="Whether the amount is locked for checkout")
    free_product_ids: list[str] = Field(default_factory=list, description="Products made free by the promotion")
    expires_at: datetime | None = Field(default=None, description="When the cart reservation lapses")
    seconds_remaining: int = Field(default=0, description="Seconds until the reservation lapses")
    urgency: str = Field(description="Countdown urgency level")
