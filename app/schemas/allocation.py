from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from models.allocation_log import AllocationAction, PortAllocationLog
from models.port import PortStatus
from models.subscription import SubscriptionStatus
from schemas.port import PortOut


class AllocationOutcome(str, Enum):
    ASSIGNED = "ASSIGNED"
    ALREADY_ASSIGNED = "ALREADY_ASSIGNED"
    NO_AVAILABLE_RESOURCES = "NO_AVAILABLE_RESOURCES"


class AllocationResult(BaseModel):
    outcome: AllocationOutcome
    subscription_id: str
    subscription_status: SubscriptionStatus
    port: Optional[PortOut] = None
    message: str

    @property
    def allocated(self) -> bool:
        return self.port is not None


class ReassignRequest(BaseModel):
    subscription_id: str = Field(..., min_length=1)

    @field_validator("subscription_id")
    def strip_id(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("subscription_id is required")
        return v


class ReassignResult(BaseModel):
    port: PortOut
    old_subscription_id: Optional[str] = None
    new_subscription_id: str


class ReleaseResult(BaseModel):
    port_id: str
    released: bool
    subscription_id: Optional[str] = None
    message: str


class AllocationLogOut(BaseModel):
    id: int
    port_id: str
    subscription_id: Optional[str] = None
    customer_id: Optional[str] = None
    action: AllocationAction
    performed_by: Optional[str] = None
    port_status: PortStatus
    timestamp: datetime

    @classmethod
    def from_model(cls, entry: PortAllocationLog) -> "AllocationLogOut":
        return cls(
            id=entry.id,
            port_id=entry.port_id,
            subscription_id=entry.subscription_id,
            customer_id=entry.customer_id,
            action=entry.action,
            performed_by=entry.performed_by,
            port_status=entry.port_status,
            timestamp=entry.timestamp,
        )


class AllocationLogPage(BaseModel):
    entries: List[AllocationLogOut]
    count: int


class AvailabilityOut(BaseModel):
    available: bool
    count: int


class CheckoutValidation(BaseModel):
    can_proceed: bool
    message: Optional[str] = None
    available_ports: int = 0


class PaymentConfirmationResult(BaseModel):
    order_id: str
    subscription_id: str
    already_processed: bool
    allocation: AllocationResult


class PendingAllocationReport(BaseModel):
    attempted: int
    allocated: List[str]
    still_pending: List[str]
    skipped: Dict[str, str] = {}


class ExpirationReport(BaseModel):
    count: int
    subscription_ids: List[str]
    released_ports: Dict[str, str]
    failed: Dict[str, str]
