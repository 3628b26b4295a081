from __future__ import annotations

import uuid
from datetime import date, datetime
from enum import Enum

from sqlalchemy import Date, DateTime, Enum as SAEnum, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from core.db import Base, utc_now


class SubscriptionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PENDING_ALLOCATION = "PENDING_ALLOCATION"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


# A subscription in one of these states never receives a port again
CLOSED_STATUSES = frozenset({SubscriptionStatus.EXPIRED, SubscriptionStatus.CANCELLED})


class Subscription(Base):
    __tablename__ = "subscriptions"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )

    customer_id: Mapped[str] = mapped_column(
        String(36),
        nullable=False,
        index=True
    )

    plan_id: Mapped[str] = mapped_column(
        String(36),
        nullable=False
    )

    order_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("orders.id"),
        nullable=True,
        unique=True
    )

    status: Mapped[SubscriptionStatus] = mapped_column(
        SAEnum(SubscriptionStatus, native_enum=False, length=30),
        nullable=False,
        default=SubscriptionStatus.ACTIVE,
        index=True
    )

    # Written only by the allocation engine
    assigned_port_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("ports.id"),
        nullable=True,
        unique=True
    )

    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)

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
