"""Checkout API routes: lock, release and confirm the payment amount."""

import logging

from fastapi import APIRouter

from storefront.api.deps import CurrentCart
from storefront.api.middleware.error_handler import ConflictError
from storefront.core.exceptions import NothingToCharge
from storefront.schemas.checkout import (
    CommitResponse,
    ConfirmPurchaseRequest,
    PurchaseResult,
    ReleaseResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/checkout", tags=["checkout"])


@router.post(
    "/commit",
    response_model=CommitResponse,
    summary="Lock payment amount",
    description="Locks the amount checkout will charge. Repeated calls return the same amount.",
    responses={409: {"description": "Cart has nothing to charge"}},
)
async def commit_checkout(session: CurrentCart) -> CommitResponse:
    """Lock the payable amount for checkout.

    Args:
        session: Cart session for the caller.

    Returns:
        CommitResponse: The locked amount.

    Raises:
        ConflictError: 409 if the cart has nothing to charge.
    """
    session.activate()
    try:
        amount = session.begin_checkout()
    except NothingToCharge as e:
        raise ConflictError(str(e)) from e
    return CommitResponse(amount=amount)


@router.post(
    "/release",
    response_model=ReleaseResponse,
    summary="Release payment amount",
    description="Abandons checkout: unlocks the amount so it follows the cart again.",
)
async def release_checkout(session: CurrentCart) -> ReleaseResponse:
    """Release the checkout lock."""
    released = session.abandon_checkout()
    return ReleaseResponse(released=released, payable_amount=session.payable_amount())


@router.post(
    "/confirm",
    response_model=PurchaseResult,
    summary="Confirm purchase",
    description=(
        "Records a paid order, fires its purchase event once and clears the cart. "
        "Confirming the same order again returns the original transaction. "
        "The provider-reported amount is used when the checkout lock has lapsed."
    ),
    responses={409: {"description": "Cart has nothing to charge"}},
)
async def confirm_purchase(data: ConfirmPurchaseRequest, session: CurrentCart) -> PurchaseResult:
    """Confirm a paid order.

    Args:
        data: Order id, payment method and charged amount from the payment provider.
        session: Cart session for the caller.

    Returns:
        PurchaseResult: Transaction id, amount and whether the event fired.

    Raises:
        ConflictError: 409 if a first confirmation finds nothing to charge.
    """
    session.activate()
    try:
        result = session.confirm_purchase(data.order_id, data.payment_method, data.amount)
    except NothingToCharge as e:
        logger.warning("Confirmation for order %s found nothing to charge", data.order_id)
        raise ConflictError(str(e)) from e
    return result
