from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from auth.auth_bearer import JWTBearer
from core.db import get_db
from dependencies import get_engine
from models.allocation_log import AllocationAction
from schemas.allocation import (
    AllocationLogOut,
    AllocationLogPage,
    AllocationResult,
    PendingAllocationReport,
    ReassignRequest,
    ReassignResult,
    ReleaseResult,
)
from services.allocation_engine import AllocationEngine
from services.allocation_log import AllocationLog

router = APIRouter(prefix="/allocation", tags=["allocation"])


@router.post(
    "/subscriptions/{subscription_id}/allocate",
    response_model=AllocationResult,
    dependencies=[Depends(JWTBearer())],
)
async def allocate_subscription(subscription_id: str, engine: AllocationEngine = Depends(get_engine)):
    """Manual allocation retry for one subscription."""
    return await engine.allocate_for_subscription(subscription_id)


@router.post("/ports/{port_id}/reassign", response_model=ReassignResult)
async def reassign_port(
    port_id: str,
    req: ReassignRequest,
    operator_id: str = Depends(JWTBearer()),
    engine: AllocationEngine = Depends(get_engine),
):
    return await engine.reassign_resource(port_id, req.subscription_id, operator_id=operator_id)


@router.post("/ports/{port_id}/release", response_model=ReleaseResult)
async def release_port(
    port_id: str,
    operator_id: str = Depends(JWTBearer()),
    engine: AllocationEngine = Depends(get_engine),
):
    return await engine.release_resource(port_id, operator_id=operator_id)


@router.post(
    "/pending/allocate",
    response_model=PendingAllocationReport,
    dependencies=[Depends(JWTBearer())],
)
async def allocate_pending(limit: int = 50, engine: AllocationEngine = Depends(get_engine)):
    return await engine.allocate_pending(limit=limit)


@router.get("/logs", response_model=AllocationLogPage, dependencies=[Depends(JWTBearer())])
async def list_logs(
    port_id: Optional[str] = None,
    subscription_id: Optional[str] = None,
    customer_id: Optional[str] = None,
    action: Optional[AllocationAction] = None,
    performed_by: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
    db: AsyncSession = Depends(get_db),
):
    entries = await AllocationLog(db).find(
        port_id=port_id,
        subscription_id=subscription_id,
        customer_id=customer_id,
        action=action,
        performed_by=performed_by,
        limit=limit,
        offset=offset,
    )
    return AllocationLogPage(
        entries=[AllocationLogOut.from_model(e) for e in entries],
        count=len(entries),
    )
