from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import CheckConstraint, DateTime, Enum as SAEnum, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from core.db import Base, utc_now


class PortStatus(str, Enum):
    """Lifecycle states of a port"""
    AVAILABLE = "AVAILABLE"
    RESERVED = "RESERVED"
    ASSIGNED = "ASSIGNED"
    DISABLED = "DISABLED"


# Statuses an operator may set directly; ASSIGNED only comes from allocation
OPERATOR_STATUSES = frozenset({PortStatus.AVAILABLE, PortStatus.RESERVED, PortStatus.DISABLED})


class Port(Base):
    __tablename__ = "ports"
    __table_args__ = (
        # Assignment fields are all set exactly when the port is ASSIGNED
        CheckConstraint(
            "(status = 'ASSIGNED' AND assigned_subscription_id IS NOT NULL "
            "AND assigned_customer_id IS NOT NULL AND assigned_at IS NOT NULL) "
            "OR (status != 'ASSIGNED' AND assigned_subscription_id IS NULL "
            "AND assigned_customer_id IS NULL AND assigned_at IS NULL)",
            name="ck_ports_assignment_consistent",
        ),
        Index("ix_ports_status_created", "status", "created_at"),
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )

    instance_url: Mapped[str] = mapped_column(
        String(512),
        unique=True,
        nullable=False
    )

    db_host: Mapped[str | None] = mapped_column(String(255), nullable=True)
    db_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    db_username: Mapped[str | None] = mapped_column(String(255), nullable=True)
    db_password: Mapped[str | None] = mapped_column(String(255), nullable=True)
    server_region: Mapped[str | None] = mapped_column(String(100), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    setup_instructions: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[PortStatus] = mapped_column(
        SAEnum(PortStatus, native_enum=False, length=20),
        nullable=False,
        default=PortStatus.AVAILABLE
    )

    # Assignment
    assigned_subscription_id: Mapped[str | None] = mapped_column(
        String(36),
        nullable=True,
        unique=True
    )

    assigned_customer_id: Mapped[str | None] = mapped_column(
        String(36),
        nullable=True,
        index=True
    )

    assigned_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        nullable=False
    )

    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=utc_now,
        nullable=True
    )

    def __repr__(self) -> str:
        return f"<Port {self.id} {self.instance_url} {self.status}>"
