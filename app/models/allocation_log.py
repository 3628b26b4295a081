from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, Enum as SAEnum, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from core.db import Base, utc_now
from models.port import PortStatus


class AllocationAction(str, Enum):
    CREATE = "CREATE"
    ASSIGN = "ASSIGN"
    REASSIGN = "REASSIGN"
    RELEASE = "RELEASE"
    STATUS_CHANGE = "STATUS_CHANGE"
    DELETE = "DELETE"


class PortAllocationLog(Base):
    """Append-only audit row; never updated or deleted."""
    __tablename__ = "port_allocation_logs"

    # Autoincrement id doubles as the write order
    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True
    )

    # No foreign key: history outlives a deleted port
    port_id: Mapped[str] = mapped_column(
        String(36),
        nullable=False,
        index=True
    )

    subscription_id: Mapped[str | None] = mapped_column(
        String(36),
        nullable=True,
        index=True
    )

    customer_id: Mapped[str | None] = mapped_column(
        String(36),
        nullable=True,
        index=True
    )

    action: Mapped[AllocationAction] = mapped_column(
        SAEnum(AllocationAction, native_enum=False, length=20),
        nullable=False
    )

    # Null for automatic (system) actions, operator id otherwise
    performed_by: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True
    )

    # Port status right after the action; DELETE rows keep the last status
    port_status: Mapped[PortStatus] = mapped_column(
        SAEnum(PortStatus, native_enum=False, length=20),
        nullable=False
    )

    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        nullable=False,
        index=True
    )
