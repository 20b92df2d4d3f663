from datetime import datetime
from typing import Annotated, Any, Dict, Literal, Optional, Union

from uuid import UUID

from pydantic import BaseModel, Field, TypeAdapter, field_validator

from cleannft.schemas.common import ApiModel, Pagination


class PerKgExpr(BaseModel):
    type: Literal["per_kg"]
    value: float = Field(gt=0, le=1_000_000)


class FlatExpr(BaseModel):
    type: Literal["flat"]
    value: float = Field(gt=0, le=1_000_000)


class PercentageExpr(BaseModel):
    type: Literal["percentage"]
    value: float = Field(gt=0, le=1_000_000)


PointsExpr = Annotated[Union[PerKgExpr, FlatExpr, PercentageExpr], Field(discriminator="type")]

points_expr_adapter = TypeAdapter(PointsExpr)


class PointRuleCreate(ApiModel):
    code: str = Field(min_length=1, max_length=50, pattern=r"^[A-Z_]+$")
    description: str = Field(min_length=1, max_length=500)
    points_expr: PointsExpr
    active_from: datetime
    active_to: Optional[datetime] = None


class PointRuleUpdate(ApiModel):
    description: Optional[str] = Field(default=None, min_length=1, max_length=500)
    points_expr: Optional[PointsExpr] = None
    active_from: Optional[datetime] = None
    active_to: Optional[datetime] = None


class PointRuleOut(ApiModel):
    code: str
    description: str
    points_expr: Dict[str, Any]
    active_from: datetime
    active_to: Optional[datetime] = None
    created_at: Optional[datetime] = None


class PointBalanceOut(ApiModel):
    points: int
    updated_at: Optional[datetime] = None


class PointLedgerOut(ApiModel):
    id: UUID
    user_id: UUID
    ref_table: str
    ref_id: str
    delta_points: int
    reason_code: str
    occurred_at: datetime
    created_at: Optional[datetime] = None


class PointLedgerList(ApiModel):
    ledger: list[PointLedgerOut]
    pagination: Pagination


class ReasonStat(ApiModel):
    reason_code: str
    total_points: int
    count: int


class PointSummary(ApiModel):
    current_balance: int
    total_earned: int
    total_spent: int
    recent_transactions: list[PointLedgerOut]
    reason_stats: list[ReasonStat]
    last_updated: Optional[datetime] = None


class ManualAdjustmentCreate(ApiModel):
    user_id: UUID
    delta_points: int
    reason_code: str = Field(min_length=1, max_length=50)
    description: Optional[str] = Field(default=None, max_length=500)

    @field_validator("delta_points")
    @classmethod
    def _non_zero(cls, v: int) -> int:
        if v == 0:
            raise ValueError("deltaPoints must not be zero")
        return v


class ManualAdjustmentOut(ApiModel):
    point_ledger: PointLedgerOut
    new_balance: int
    adjustment: Dict[str, Any]


class PointStats(ApiModel):
    total_users_with_points: int
    total_points_in_circulation: int
    points_by_reason: list[ReasonStat]
    recent_activity: list[PointLedgerOut]
