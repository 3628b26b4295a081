from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.db import get_session_factory
from services.allocation_engine import AllocationEngine
from services.payment_confirmation import PaymentConfirmation
from services.port_service import PortService


def get_engine(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> AllocationEngine:
    return AllocationEngine(session_factory)


def get_port_service(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> PortService:
    return PortService(session_factory)


def get_payment_confirmation(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    engine: AllocationEngine = Depends(get_engine),
) -> PaymentConfirmation:
    return PaymentConfirmation(session_factory, engine)

