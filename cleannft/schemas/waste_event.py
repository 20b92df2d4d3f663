from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Literal, Optional

from uuid import UUID

from pydantic import Field, field_validator

from cleannft.schemas.common import ApiModel, Pagination


WasteSource = Literal["IOT", "QR", "MANUAL"]


class WasteEventCreate(ApiModel):
    station_code: Optional[str] = Field(default=None, max_length=50)
    device_hw_id: Optional[str] = Field(default=None, max_length=100)
    material_type: str
    weight_grams: Decimal = Field(gt=0, le=1_000_000)
    source: WasteSource
    raw_payload: Dict[str, Any] = Field(default_factory=dict)

    # Devices retrying a submission must echo occurredAt and rawPayload.nonce.
    occurred_at: Optional[datetime] = None

    @field_validator("material_type")
    @classmethod
    def _strip_material_type(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("materialType is required")
        if len(v) > 100:
            raise ValueError("materialType must be at most 100 characters")
        return v

    @field_validator("weight_grams")
    @classmethod
    def _round_weight(cls, v: Decimal) -> Decimal:
        rounded = v.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
        if rounded <= 0:
            raise ValueError("weightGrams must be at least 0.01 after rounding")
        return rounded


class WasteEventOut(ApiModel):
    id: UUID
    user_id: Optional[UUID] = None
    station_code: Optional[str] = None
    device_id: Optional[UUID] = None
    occurred_at: datetime
    material_type: str
    weight_grams: float
    source: str
    raw_payload: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None


class WasteEventCreated(ApiModel):
    waste_event: WasteEventOut
    points_awarded: int


class WasteEventList(ApiModel):
    waste_events: list[WasteEventOut]
    pagination: Pagination


class WasteStats(ApiModel):
    total_events: int
    total_weight_grams: float
    material_stats: list[Dict[str, Any]]
    source_stats: list[Dict[str, Any]]
    recent_events: list[WasteEventOut]
