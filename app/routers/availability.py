from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from core.db import get_db
from core.environment import get_checkout_rate_limit
from middleware.rate_limit import limiter
from schemas.allocation import AvailabilityOut, CheckoutValidation
from services.availability import AvailabilityQuery

router = APIRouter(tags=["checkout"])


@router.get("/availability", response_model=AvailabilityOut)
async def availability(db: AsyncSession = Depends(get_db)):
    return await AvailabilityQuery(db).check_availability()


@router.get("/checkout/validate", response_model=CheckoutValidation)
@limiter.limit(get_checkout_rate_limit())
async def validate_checkout(request: Request, db: AsyncSession = Depends(get_db)):
    """Pre-payment check; advisory only, the port is claimed after payment."""
    return await AvailabilityQuery(db).validate_checkout()
