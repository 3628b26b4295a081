from typing import List

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.prometheus_metrics import prometheus_collector
from schemas.allocation import AvailabilityOut, CheckoutValidation
from schemas.port import PortOut
from services.exceptions import PersistenceError
from services.port_pool import PortPool


NO_PORTS_MESSAGE = "No available ports. Please contact support."


class AvailabilityQuery:
    """
    Read-only view of free ports for the checkout flow.

    The answer is advisory: a port seen here may be taken before the paid
    order is allocated, in which case the subscription falls back to
    PENDING_ALLOCATION.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.pool = PortPool(db)

    async def available_count(self) -> int:
        try:
            count = await self.pool.count_available()
        except SQLAlchemyError as e:
            raise PersistenceError("Could not check port availability.") from e
        prometheus_collector.update_available_ports(count)
        return count

    async def has_available(self) -> bool:
        return await self.available_count() > 0

    async def list_available(self, limit: int = 10) -> List[PortOut]:
        try:
            ports = await self.pool.find_available(limit=limit)
        except SQLAlchemyError as e:
            raise PersistenceError("Could not list available ports.") from e
        return [PortOut.from_model(p) for p in ports]

    async def check_availability(self) -> AvailabilityOut:
        count = await self.available_count()
        return AvailabilityOut(available=count > 0, count=count)

    async def validate_checkout(self) -> CheckoutValidation:
        availability = await self.check_availability()
        if not availability.available:
            return CheckoutValidation(can_proceed=False, message=NO_PORTS_MESSAGE, available_ports=0)
        return CheckoutValidation(can_proceed=True, available_ports=availability.count)
