from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from cleannft.db import get_db
from cleannft.deps.auth import CurrentUser, get_current_user, require_admin
from cleannft.schemas.point import (
    ManualAdjustmentCreate,
    ManualAdjustmentOut,
    PointBalanceOut,
    PointLedgerList,
    PointLedgerOut,
    PointRuleCreate,
    PointRuleOut,
    PointRuleUpdate,
    PointStats,
    PointSummary,
)
from cleannft.services.points_service import (
    create_point_rule,
    get_point_balance,
    get_point_history,
    get_point_ledger,
    get_point_stats,
    get_point_summary,
    list_point_rules,
    manual_point_adjustment,
    update_point_rule,
)

router = APIRouter(prefix="/points", tags=["points"])

LedgerSortBy = Literal["occurredAt", "createdAt", "deltaPoints"]


@router.get("/balance", response_model=PointBalanceOut)
def read_balance(user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
    return get_point_balance(db, user.id)


@router.get("/ledger", response_model=PointLedgerList)
def read_ledger(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    sort_by: LedgerSortBy = Query(default="occurredAt", alias="sortBy"),
    sort_order: Literal["asc", "desc"] = Query(default="desc", alias="sortOrder"),
    reason_code: str | None = Query(default=None, alias="reasonCode"),
    start_date: datetime | None = Query(default=None, alias="startDate"),
    end_date: datetime | None = Query(default=None, alias="endDate"),
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return get_point_ledger(
        db,
        user.id,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
        reason_code=reason_code,
        start_date=start_date,
        end_date=end_date,
    )


@router.get("/summary", response_model=PointSummary)
def read_summary(user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
    return get_point_summary(db, user.id)


@router.get("/history", response_model=list[PointLedgerOut])
def read_history(
    start_date: datetime | None = Query(default=None, alias="startDate"),
    end_date: datetime | None = Query(default=None, alias="endDate"),
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return get_point_history(db, user.id, start_date=start_date, end_date=end_date)


@router.post("/adjust", response_model=ManualAdjustmentOut, status_code=201)
def adjust_points(
    payload: ManualAdjustmentCreate,
    admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return manual_point_adjustment(db, admin_user_id=admin.id, payload=payload)


@router.get("/stats", response_model=PointStats)
def read_point_stats(admin: CurrentUser = Depends(require_admin), db: Session = Depends(get_db)):
    return get_point_stats(db)


@router.get("/rules", response_model=list[PointRuleOut])
def read_rules(
    active: bool = False,
    admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return list_point_rules(db, active_only=active)


@router.post("/rules", response_model=PointRuleOut, status_code=201)
def add_rule(
    payload: PointRuleCreate,
    admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return create_point_rule(db, admin_user_id=admin.id, payload=payload)


@router.put("/rules/{code}", response_model=PointRuleOut)
def edit_rule(
    code: str,
    payload: PointRuleUpdate,
    admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return update_point_rule(db, code, admin_user_id=admin.id, payload=payload)
