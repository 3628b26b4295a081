from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from models.port import Port, PortStatus
from services.exceptions import DuplicateError, NotFoundError, PortStateError


# Columns an operator may write through update(); assignment fields are excluded
EDITABLE_FIELDS = frozenset({
    "instance_url", "db_host", "db_name", "db_username", "db_password",
    "server_region", "notes", "setup_instructions",
})


class PortPool:
    """
    Catalogue of allocatable ports and their lifecycle states.

    The pool works inside whatever transaction its session is in and never
    commits. State-changing writes are single conditional UPDATE statements
    whose affected row count decides success, so two allocators racing for
    the same row cannot both win.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, port_id: str) -> Optional[Port]:
        # populate_existing: reflect writes made by conditional UPDATEs
        stmt = (
            select(Port)
            .where(Port.id == port_id)
            .execution_options(populate_existing=True)
        )
        return (await self.db.execute(stmt)).scalar_one_or_none()

    async def get_or_raise(self, port_id: str) -> Port:
        port = await self.get(port_id)
        if port is None:
            raise NotFoundError(f"Port {port_id} not found.")
        return port

    async def list(
        self,
        status: Optional[PortStatus] = None,
        assigned_subscription_id: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Port]:
        stmt = select(Port)
        if status is not None:
            stmt = stmt.where(Port.status == status)
        if assigned_subscription_id is not None:
            stmt = stmt.where(Port.assigned_subscription_id == assigned_subscription_id)
        stmt = stmt.order_by(Port.created_at.desc(), Port.id).limit(limit).offset(offset)
        return list((await self.db.execute(stmt)).scalars().all())

    async def find_available(
        self,
        exclude_ids: Iterable[str] = (),
        limit: int = 1,
    ) -> List[Port]:
        """AVAILABLE ports, oldest first; `exclude_ids` skips candidates already lost."""
        stmt = select(Port).where(Port.status == PortStatus.AVAILABLE)
        excluded = list(exclude_ids)
        if excluded:
            stmt = stmt.where(Port.id.not_in(excluded))
        stmt = stmt.order_by(Port.created_at, Port.id).limit(limit)
        return list((await self.db.execute(stmt)).scalars().all())

    async def count_available(self) -> int:
        stmt = select(func.count(Port.id)).where(Port.status == PortStatus.AVAILABLE)
        return (await self.db.execute(stmt)).scalar() or 0

    async def instance_url_exists(self, instance_url: str, exclude_id: Optional[str] = None) -> bool:
        stmt = select(func.count(Port.id)).where(Port.instance_url == instance_url)
        if exclude_id is not None:
            stmt = stmt.where(Port.id != exclude_id)
        return ((await self.db.execute(stmt)).scalar() or 0) > 0

    async def create(self, data: Dict[str, Any]) -> Port:
        if await self.instance_url_exists(data["instance_url"]):
            raise DuplicateError("Port with this instance URL already exists.")

        port = Port(**{k: v for k, v in data.items() if k in EDITABLE_FIELDS})
        port.status = data.get("status") or PortStatus.AVAILABLE
        if port.status == PortStatus.ASSIGNED:
            raise PortStateError("Ports cannot be created in ASSIGNED state.")

        self.db.add(port)
        await self.db.flush()
        return port

    async def assign(
        self,
        port_id: str,
        subscription_id: str,
        customer_id: str,
        assigned_at: datetime,
        expected_status: PortStatus = PortStatus.AVAILABLE,
        expected_subscription_id: Optional[str] = None,
    ) -> bool:
        """
        Compare-and-set the port onto a subscription.

        Matches only while the row still has `expected_status` (and, for a
        reassignment, the holder captured by the caller). Returns False when
        another writer changed the row first.
        """
        stmt = (
            update(Port)
            .where(Port.id == port_id, Port.status == expected_status)
            .values(
                status=PortStatus.ASSIGNED,
                assigned_subscription_id=subscription_id,
                assigned_customer_id=customer_id,
                assigned_at=assigned_at,
            )
            .execution_options(synchronize_session=False)
        )
        if expected_subscription_id is None:
            stmt = stmt.where(Port.assigned_subscription_id.is_(None))
        else:
            stmt = stmt.where(Port.assigned_subscription_id == expected_subscription_id)

        result = await self.db.execute(stmt)
        return result.rowcount == 1

    async def release(self, port_id: str, expected_subscription_id: Optional[str] = None) -> bool:
        """
        Clears the assignment and makes the port AVAILABLE again.

        A DISABLED port is never matched: an operator has to re-enable it
        explicitly before it can be handed out.
        """
        stmt = (
            update(Port)
            .where(Port.id == port_id, Port.status != PortStatus.DISABLED)
            .values(
                status=PortStatus.AVAILABLE,
                assigned_subscription_id=None,
                assigned_customer_id=None,
                assigned_at=None,
            )
            .execution_options(synchronize_session=False)
        )
        if expected_subscription_id is not None:
            stmt = stmt.where(Port.assigned_subscription_id == expected_subscription_id)

        result = await self.db.execute(stmt)
        return result.rowcount == 1

    async def set_status(self, port_id: str, status: PortStatus, expected_status: PortStatus) -> bool:
        """Operator status change between non-assigned states."""
        if PortStatus.ASSIGNED in (status, expected_status):
            raise PortStateError("ASSIGNED ports change state only through allocation.")

        stmt = (
            update(Port)
            .where(Port.id == port_id, Port.status == expected_status)
            .values(status=status)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1

    async def update(self, port_id: str, fields: Dict[str, Any]) -> bool:
        values = {k: v for k, v in fields.items() if k in EDITABLE_FIELDS}
        if not values:
            return False

        if "instance_url" in values and await self.instance_url_exists(values["instance_url"], exclude_id=port_id):
            raise DuplicateError("Port with this instance URL already exists.")

        stmt = (
            update(Port)
            .where(Port.id == port_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1

    async def delete(self, port_id: str) -> bool:
        stmt = (
            delete(Port)
            .where(Port.id == port_id, Port.status != PortStatus.ASSIGNED)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        if result.rowcount == 1:
            return True
        if await self.get(port_id) is not None:
            raise PortStateError("Cannot delete a port that is currently assigned to a subscription.")
        return False
