from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models.allocation_log import AllocationAction, PortAllocationLog
from models.port import PortStatus


@dataclass(frozen=True)
class PortSnapshot:
    status: PortStatus
    subscription_id: Optional[str] = None
    customer_id: Optional[str] = None


class AllocationLog:
    """
    Append-only writer for the port allocation audit trail.

    Entries are added to the caller's session so they commit or roll back
    together with the state change they describe. Nothing here updates or
    deletes a row.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _append(
        self,
        port_id: str,
        action: AllocationAction,
        port_status: PortStatus,
        subscription_id: Optional[str] = None,
        customer_id: Optional[str] = None,
        performed_by: Optional[str] = None,
    ) -> PortAllocationLog:
        entry = PortAllocationLog(
            port_id=port_id,
            subscription_id=subscription_id,
            customer_id=customer_id,
            action=action,
            performed_by=performed_by,
            port_status=port_status,
        )
        self.db.add(entry)
        await self.db.flush()
        return entry

    async def log_creation(self, port_id: str, status: PortStatus, performed_by: Optional[str] = None):
        return await self._append(port_id, AllocationAction.CREATE, status, performed_by=performed_by)

    async def log_assignment(self, port_id: str, subscription_id: str, customer_id: str, performed_by: Optional[str] = None):
        return await self._append(
            port_id, AllocationAction.ASSIGN, PortStatus.ASSIGNED,
            subscription_id=subscription_id, customer_id=customer_id, performed_by=performed_by,
        )

    async def log_reassignment(self, port_id: str, subscription_id: str, customer_id: str, performed_by: str):
        if not performed_by:
            raise ValueError("Reassignment is always a manual action; performed_by is required.")
        return await self._append(
            port_id, AllocationAction.REASSIGN, PortStatus.ASSIGNED,
            subscription_id=subscription_id, customer_id=customer_id, performed_by=performed_by,
        )

    async def log_release(self, port_id: str, subscription_id: str, customer_id: Optional[str], performed_by: Optional[str] = None):
        return await self._append(
            port_id, AllocationAction.RELEASE, PortStatus.AVAILABLE,
            subscription_id=subscription_id, customer_id=customer_id, performed_by=performed_by,
        )

    async def log_status_change(self, port_id: str, status: PortStatus, performed_by: Optional[str] = None):
        return await self._append(port_id, AllocationAction.STATUS_CHANGE, status, performed_by=performed_by)

    async def log_deletion(self, port_id: str, last_status: PortStatus, performed_by: Optional[str] = None):
        return await self._append(port_id, AllocationAction.DELETE, last_status, performed_by=performed_by)

    async def find(
        self,
        port_id: Optional[str] = None,
        subscription_id: Optional[str] = None,
        customer_id: Optional[str] = None,
        action: Optional[AllocationAction] = None,
        performed_by: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[PortAllocationLog]:
        """Newest entries first, filtered on any combination of columns."""
        stmt = select(PortAllocationLog)
        if port_id is not None:
            stmt = stmt.where(PortAllocationLog.port_id == port_id)
        if subscription_id is not None:
            stmt = stmt.where(PortAllocationLog.subscription_id == subscription_id)
        if customer_id is not None:
            stmt = stmt.where(PortAllocationLog.customer_id == customer_id)
        if action is not None:
            stmt = stmt.where(PortAllocationLog.action == action)
        if performed_by is not None:
            stmt = stmt.where(PortAllocationLog.performed_by == performed_by)
        stmt = (
            stmt.order_by(PortAllocationLog.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return list((await self.db.execute(stmt)).scalars().all())

    async def history(self, port_id: Optional[str] = None) -> List[PortAllocationLog]:
        """Entries in the order they were written, optionally for one port."""
        stmt = select(PortAllocationLog)
        if port_id is not None:
            stmt = stmt.where(PortAllocationLog.port_id == port_id)
        stmt = stmt.order_by(PortAllocationLog.id)
        return list((await self.db.execute(stmt)).scalars().all())


def replay(entries: Iterable[PortAllocationLog]) -> Dict[str, PortSnapshot]:
    """
    Folds log entries (oldest first) into the port states they describe.

    Deleted ports drop out of the result. Comparing the output with the
    ports table is how audit completeness is checked.
    """
    state: Dict[str, PortSnapshot] = {}
    for entry in entries:
        if entry.action == AllocationAction.DELETE:
            state.pop(entry.port_id, None)
        elif entry.action in (AllocationAction.ASSIGN, AllocationAction.REASSIGN):
            state[entry.port_id] = PortSnapshot(PortStatus.ASSIGNED, entry.subscription_id, entry.customer_id)
        elif entry.action == AllocationAction.RELEASE:
            state[entry.port_id] = PortSnapshot(PortStatus.AVAILABLE)
        else:
            state[entry.port_id] = PortSnapshot(entry.port_status)
    return state
