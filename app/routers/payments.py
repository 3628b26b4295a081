from fastapi import APIRouter, Depends

from dependencies import get_payment_confirmation
from schemas.allocation import PaymentConfirmationResult
from services.payment_confirmation import PaymentConfirmation

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/{order_id}/confirm", response_model=PaymentConfirmationResult)
async def confirm_payment(
    order_id: str,
    service: PaymentConfirmation = Depends(get_payment_confirmation),
):
    """
    Payment provider webhook.

    Safe to deliver more than once: a repeat returns the existing
    subscription with `already_processed` set. Running out of ports is not
    an error here; the subscription is left PENDING_ALLOCATION.
    """
    return await service.confirm_payment(order_id)
