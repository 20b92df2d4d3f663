from datetime import datetime
from typing import Any, Dict, Literal, Optional

from uuid import UUID

from pydantic import Field

from cleannft.schemas.common import ApiModel, Pagination


DeviceStatus = Literal["ACTIVE", "INACTIVE", "MAINTENANCE", "ERROR"]


class SystemHealth(ApiModel):
    database: bool
    pending_outbox_events: int
    failed_transactions: int
    expired_sessions: int
    error_devices: int
    overall: bool


class StationCreate(ApiModel):
    code: str = Field(min_length=1, max_length=50, pattern=r"^[A-Z0-9_]+$")
    name: str = Field(min_length=1, max_length=200)
    location: str = Field(min_length=1, max_length=500)
    metadata: Optional[Dict[str, Any]] = None


class StationOut(ApiModel):
    code: str
    name: str
    location: str
    metadata: Optional[Dict[str, Any]] = Field(default=None, validation_alias="metadata_")
    created_at: Optional[datetime] = None


class DeviceCreate(ApiModel):
    station_code: str = Field(min_length=1, max_length=50)
    hw_id: str = Field(min_length=1, max_length=100)
    status: DeviceStatus = "ACTIVE"
    metadata: Optional[Dict[str, Any]] = None


class DeviceStatusUpdate(ApiModel):
    status: DeviceStatus


class DeviceOut(ApiModel):
    id: UUID
    hw_id: str
    station_code: str
    status: str
    metadata: Optional[Dict[str, Any]] = Field(default=None, validation_alias="metadata_")
    created_at: Optional[datetime] = None


class AdminActionOut(ApiModel):
    id: UUID
    admin_user_id: UUID
    action: str
    target_table: Optional[str] = None
    target_id: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    occurred_at: Optional[datetime] = None


class AdminActionList(ApiModel):
    actions: list[AdminActionOut]
    pagination: Pagination
