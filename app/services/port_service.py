import logging
from typing import List, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.metrics import track_performance
from models.port import PortStatus
from schemas.port import PortCreate, PortImportError, PortImportResult, PortOut, PortUpdate
from services.allocation_log import AllocationLog
from services.exceptions import (
    DuplicateError,
    InvalidPortDataError,
    NotFoundError,
    PortStateError,
)
from services.port_pool import PortPool
from services.transactions import transaction

logger = logging.getLogger(__name__)


class PortService:
    """
    Operator-facing port CRUD.

    Each call is one transaction and writes its audit entry (CREATE,
    STATUS_CHANGE, DELETE) alongside the change. Assignment fields are never
    touched here; those belong to the allocation engine.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    def _transaction(self):
        # instance_url is the only unique column operators write
        return transaction(
            self.session_factory,
            on_integrity_error=DuplicateError,
            integrity_message="Port with this instance URL already exists.",
        )

    @track_performance(service_name="PortService")
    async def create_port(self, data: PortCreate, operator_id: Optional[str] = None) -> PortOut:
        async with self._transaction() as session:
            port = await PortPool(session).create(data.model_dump())
            await AllocationLog(session).log_creation(port.id, port.status, performed_by=operator_id)
            result = PortOut.from_model(port)

        logger.info("Port created", extra={'port_id': result.id, 'operator_id': operator_id})
        return result

    async def get_port(self, port_id: str) -> PortOut:
        async with self._transaction() as session:
            return PortOut.from_model(await PortPool(session).get_or_raise(port_id))

    async def list_ports(
        self,
        status: Optional[PortStatus] = None,
        assigned_subscription_id: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[PortOut]:
        async with self._transaction() as session:
            ports = await PortPool(session).list(status, assigned_subscription_id, limit, offset)
            return [PortOut.from_model(p) for p in ports]

    @track_performance(service_name="PortService")
    async def update_port(self, port_id: str, data: PortUpdate, operator_id: Optional[str] = None) -> PortOut:
        """
        Applies operator edits.

        A status change is only allowed between AVAILABLE, RESERVED and
        DISABLED, and never while the port is ASSIGNED; release it first.
        """
        changes = data.model_dump(exclude_unset=True)
        new_status = changes.pop("status", None)
        if "instance_url" in changes and changes["instance_url"] is None:
            raise InvalidPortDataError("instance_url cannot be cleared.")

        async with self._transaction() as session:
            pool = PortPool(session)
            port = await pool.get_or_raise(port_id)

            if changes:
                await pool.update(port_id, changes)

            if new_status is not None and new_status != port.status:
                if port.status == PortStatus.ASSIGNED:
                    raise PortStateError("Cannot change the status of an assigned port; release it first.")
                if not await pool.set_status(port_id, new_status, expected_status=port.status):
                    raise PortStateError(f"Port {port_id} changed state concurrently; reload and retry.")
                await AllocationLog(session).log_status_change(port_id, new_status, performed_by=operator_id)

            result = PortOut.from_model(await pool.get(port_id))

        logger.info("Port updated", extra={'port_id': port_id, 'operator_id': operator_id})
        return result

    @track_performance(service_name="PortService")
    async def delete_port(self, port_id: str, operator_id: Optional[str] = None) -> None:
        async with self._transaction() as session:
            pool = PortPool(session)
            port = await pool.get_or_raise(port_id)
            if port.status == PortStatus.ASSIGNED:
                raise PortStateError("Cannot delete a port that is currently assigned to a subscription.")

            last_status = port.status
            if not await pool.delete(port_id):
                raise NotFoundError(f"Port {port_id} not found.")
            await AllocationLog(session).log_deletion(port_id, last_status, performed_by=operator_id)

        logger.info("Port deleted", extra={'port_id': port_id, 'operator_id': operator_id})

    @track_performance(service_name="PortService")
    async def bulk_import(self, rows: List[dict], operator_id: Optional[str] = None) -> PortImportResult:
        """
        Creates ports row by row; one bad row never blocks the others.
        """
        imported: List[PortOut] = []
        errors: List[PortImportError] = []

        for index, row in enumerate(rows):
            instance_url = row.get("instance_url") if isinstance(row, dict) else None
            try:
                data = PortCreate.model_validate(row)
            except PydanticValidationError as e:
                errors.append(PortImportError(
                    index=index,
                    instance_url=instance_url,
                    error=str(e.errors()[0]["msg"]),
                    code=InvalidPortDataError.code,
                ))
                continue

            try:
                imported.append(await self.create_port(data, operator_id=operator_id))
            except (DuplicateError, PortStateError) as e:
                errors.append(PortImportError(index=index, instance_url=instance_url, error=e.message, code=e.code))

        return PortImportResult(
            imported=len(imported),
            failed=len(errors),
            imported_ports=imported,
            errors=errors,
        )
