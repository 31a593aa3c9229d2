"""Cart API routes."""

from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Body

from storefront.api.deps import CurrentCart
from storefront.api.middleware.error_handler import NotFoundError, ValidationError
from storefront.core.exceptions import InvalidLineItem
from storefront.schemas.cart import (
    AddItemRequest,
    CartResponse,
    LineItem,
    SetItemsRequest,
    Size,
    UpdateItemRequest,
)
from storefront.services.cart_session import CartSession

router = APIRouter(prefix="/cart", tags=["cart"])


def build_cart_response(session: CartSession) -> CartResponse:
    """Assemble the cart view returned by every cart route."""
    items = session.items
    expires_at = session.monitor.expires_at()
    return CartResponse(
        items=items,
        snapshot=session.snapshot,
        payable_amount=session.payable_amount(),
        checkout_locked=session.synchronizer.is_locked,
        free_product_ids=session.free_product_ids(),
        expires_at=datetime.fromtimestamp(expires_at, tz=timezone.utc) if expires_at else None,
        seconds_remaining=session.monitor.remaining_seconds(),
        urgency=session.monitor.urgency().value,
    )


@router.get(
    "",
    response_model=CartResponse,
    summary="Get cart",
    description="Returns the cart re-derived from storage, including totals and the payable amount.",
)
async def get_cart(session: CurrentCart) -> CartResponse:
    """Reconcile the session from storage and return it.

    Args:
        session: Cart session for the caller.

    Returns:
        CartResponse: Current cart state.
    """
    session.activate()
    return build_cart_response(session)


@router.post(
    "/items",
    response_model=CartResponse,
    summary="Add or update cart item",
    description=(
        "Adds a product, or replaces its quantity and size when already in the cart. "
        "Prices are taken from the request as sent."
    ),
)
async def add_item(data: AddItemRequest, session: CurrentCart) -> CartResponse:
    """Add a product to the cart.

    Args:
        data: Product, prices and selection.
        session: Cart session for the caller.

    Returns:
        CartResponse: Updated cart state.
    """
    session.add_item(LineItem.model_validate(data.model_dump()))
    return build_cart_response(session)


@router.post(
    "/products",
    response_model=CartResponse,
    summary="Add catalogue product",
    description="Adds a raw catalogue product record, mapping its price fields into a cart item.",
)
async def add_product(
    session: CurrentCart,
    product: dict[str, Any] = Body(description="Catalogue product record"),
    quantity: int | None = None,
    size: Size | None = None,
) -> CartResponse:
    """Add an upstream product record to the cart.

    Raises:
        ValidationError: 422 if the record has no product id.
    """
    try:
        session.add_item(product, quantity, size)
    except InvalidLineItem as e:
        raise ValidationError(str(e)) from e
    return build_cart_response(session)


@router.put(
    "/items",
    response_model=CartResponse,
    summary="Replace cart",
    description="Replaces every item in the cart. Repeated product ids keep their last values.",
)
async def set_items(data: SetItemsRequest, session: CurrentCart) -> CartResponse:
    """Replace the cart contents."""
    session.set_items([LineItem.model_validate(item.model_dump()) for item in data.items])
    return build_cart_response(session)


@router.patch(
    "/items/{product_id}",
    response_model=CartResponse,
    summary="Update cart item",
    description="Changes the quantity and size of an item already in the cart.",
)
async def update_item(product_id: str, data: UpdateItemRequest, session: CurrentCart) -> CartResponse:
    """Update quantity and size of a cart item.

    Raises:
        NotFoundError: 404 if the product is not in the cart.
    """
    try:
        session.update_item(product_id, data.quantity, data.size)
    except KeyError as e:
        raise NotFoundError(f"Product {product_id} is not in the cart") from e
    return build_cart_response(session)


@router.delete(
    "/items/{product_id}",
    response_model=CartResponse,
    summary="Remove cart item",
    description="Removes a product from the cart. Removing an absent product is a no-op.",
)
async def remove_item(product_id: str, session: CurrentCart) -> CartResponse:
    """Remove a product from the cart."""
    session.remove_item(product_id)
    return build_cart_response(session)


@router.delete(
    "",
    response_model=CartResponse,
    summary="Clear cart",
    description="Empties the cart and drops its totals and payment amount.",
)
async def clear_cart(session: CurrentCart) -> CartResponse:
    """Empty the cart."""
    session.clear_cart()
    return build_cart_response(session)
