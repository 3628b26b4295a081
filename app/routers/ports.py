from typing import List, Optional

from fastapi import APIRouter, Body, Depends, Response

from auth.auth_bearer import JWTBearer
from dependencies import get_port_service
from models.port import PortStatus
from schemas.port import PortCreate, PortImportResult, PortList, PortOut, PortUpdate
from services.port_service import PortService

router = APIRouter(prefix="/ports", tags=["ports"])


@router.post("", response_model=PortOut, status_code=201)
async def create_port(
    data: PortCreate,
    operator_id: str = Depends(JWTBearer()),
    service: PortService = Depends(get_port_service),
):
    return await service.create_port(data, operator_id=operator_id)


@router.post("/import", response_model=PortImportResult)
async def import_ports(
    rows: List[dict] = Body(...),
    operator_id: str = Depends(JWTBearer()),
    service: PortService = Depends(get_port_service),
):
    """Bulk import; rows that fail validation or clash are reported, not raised."""
    return await service.bulk_import(rows, operator_id=operator_id)


@router.get("", response_model=PortList, dependencies=[Depends(JWTBearer())])
async def list_ports(
    status: Optional[PortStatus] = None,
    subscription_id: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
    service: PortService = Depends(get_port_service),
):
    ports = await service.list_ports(status, subscription_id, limit, offset)
    return PortList(ports=ports, count=len(ports))


@router.get("/{port_id}", response_model=PortOut, dependencies=[Depends(JWTBearer())])
async def get_port(port_id: str, service: PortService = Depends(get_port_service)):
    return await service.get_port(port_id)


@router.patch("/{port_id}", response_model=PortOut)
async def update_port(
    port_id: str,
    data: PortUpdate,
    operator_id: str = Depends(JWTBearer()),
    service: PortService = Depends(get_port_service),
):
    return await service.update_port(port_id, data, operator_id=operator_id)


@router.delete("/{port_id}", status_code=204)
async def delete_port(
    port_id: str,
    operator_id: str = Depends(JWTBearer()),
    service: PortService = Depends(get_port_service),
):
    await service.delete_port(port_id, operator_id=operator_id)
    return Response(status_code=204)
