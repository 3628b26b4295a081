from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from models.port import OPERATOR_STATUSES, Port, PortStatus


class PortAssignment(BaseModel):
    """Who holds an ASSIGNED port; present as a whole or not at all."""
    model_config = ConfigDict(frozen=True)

    subscription_id: str
    customer_id: str
    assigned_at: datetime


class PortOut(BaseModel):
    id: str
    instance_url: str
    status: PortStatus
    assignment: Optional[PortAssignment] = None
    db_host: Optional[str] = None
    db_name: Optional[str] = None
    db_username: Optional[str] = None
    server_region: Optional[str] = None
    notes: Optional[str] = None
    setup_instructions: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @model_validator(mode="after")
    def assignment_matches_status(self):
        if self.status == PortStatus.ASSIGNED and self.assignment is None:
            raise ValueError("ASSIGNED port must carry an assignment")
        if self.status != PortStatus.ASSIGNED and self.assignment is not None:
            raise ValueError(f"{self.status.value} port cannot carry an assignment")
        return self

    @classmethod
    def from_model(cls, port: Port) -> "PortOut":
        assignment = None
        if port.assigned_subscription_id is not None:
            assignment = PortAssignment(
                subscription_id=port.assigned_subscription_id,
                customer_id=port.assigned_customer_id,
                assigned_at=port.assigned_at,
            )
        return cls(
            id=port.id,
            instance_url=port.instance_url,
            status=port.status,
            assignment=assignment,
            db_host=port.db_host,
            db_name=port.db_name,
            db_username=port.db_username,
            server_region=port.server_region,
            notes=port.notes,
            setup_instructions=port.setup_instructions,
            created_at=port.created_at,
            updated_at=port.updated_at,
        )


def _operator_status(v: Optional[PortStatus]) -> Optional[PortStatus]:
    if v is not None and v not in OPERATOR_STATUSES:
        raise ValueError("status must be one of AVAILABLE, RESERVED, DISABLED; ports are ASSIGNED only by allocation")
    return v


class PortCreate(BaseModel):
    instance_url: str = Field(..., min_length=1, max_length=512)
    db_host: Optional[str] = None
    db_name: Optional[str] = None
    db_username: Optional[str] = None
    db_password: Optional[str] = None
    server_region: Optional[str] = None
    notes: Optional[str] = None
    setup_instructions: Optional[str] = None
    status: PortStatus = PortStatus.AVAILABLE

    @field_validator("instance_url")
    def strip_instance_url(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("instance_url is required")
        return v

    @field_validator("status")
    def not_assigned(cls, v):
        return _operator_status(v)


class PortUpdate(BaseModel):
    instance_url: Optional[str] = Field(None, min_length=1, max_length=512)
    db_host: Optional[str] = None
    db_name: Optional[str] = None
    db_username: Optional[str] = None
    db_password: Optional[str] = None
    server_region: Optional[str] = None
    notes: Optional[str] = None
    setup_instructions: Optional[str] = None
    status: Optional[PortStatus] = None

    @field_validator("instance_url")
    def strip_instance_url(cls, v):
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("instance_url cannot be blank")
        return v

    @field_validator("status")
    def not_assigned(cls, v):
        return _operator_status(v)


class PortImportError(BaseModel):
    index: int
    instance_url: Optional[str] = None
    error: str
    code: str


class PortImportResult(BaseModel):
    imported: int
    failed: int
    imported_ports: List[PortOut]
    errors: List[PortImportError]


class PortList(BaseModel):
    ports: List[PortOut]
    count: int
