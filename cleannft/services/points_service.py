import logging
from datetime import datetime, timezone

from sqlalchemy import case, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cleannft.db import utcnow, with_transaction
from cleannft.errors import ConflictError, NotFoundError
from cleannft.models.point_balance import PointBalance
from cleannft.models.point_ledger import PointLedger
from cleannft.models.point_rule import PointRule
from cleannft.models.user import User
from cleannft.schemas.common import build_pagination
from cleannft.schemas.point import ManualAdjustmentCreate, PointRuleCreate, PointRuleUpdate
from cleannft.services.admin_service import log_admin_action
from cleannft.services.ledger_service import append_ledger_entry


logger = logging.getLogger(__name__)

MANUAL_ADJUSTMENT_REF = "manual_adjustment"

LEDGER_SORT_COLUMNS = {
    "occurredAt": PointLedger.occurred_at,
    "createdAt": PointLedger.created_at,
    "deltaPoints": PointLedger.delta_points,
}


def _to_utc_naive(dt: datetime | None) -> datetime | None:
    if dt is None or dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def get_point_balance(db: Session, user_id):
    balance = db.query(PointBalance).filter(PointBalance.user_id == user_id).first()
    if balance is None:
        try:
            with db.begin_nested():
                db.add(PointBalance(user_id=user_id, points=0, updated_at=utcnow()))
                db.flush()
        except IntegrityError:
            pass
        db.commit()
        balance = db.query(PointBalance).filter(PointBalance.user_id == user_id).first()
    return balance


def _current_points(db: Session, user_id) -> int:
    points = db.query(PointBalance.points).filter(PointBalance.user_id == user_id).scalar()
    return int(points or 0)


def get_point_ledger(
    db: Session,
    user_id,
    *,
    page: int = 1,
    limit: int = 20,
    sort_by: str = "occurredAt",
    sort_order: str = "desc",
    reason_code: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
):
    q = db.query(PointLedger).filter(PointLedger.user_id == user_id)
    if reason_code:
        q = q.filter(PointLedger.reason_code == reason_code)
    if start_date:
        q = q.filter(PointLedger.occurred_at >= _to_utc_naive(start_date))
    if end_date:
        q = q.filter(PointLedger.occurred_at <= _to_utc_naive(end_date))

    total = q.count()

    column = LEDGER_SORT_COLUMNS.get(sort_by, PointLedger.occurred_at)
    order = column.asc() if sort_order == "asc" else column.desc()
    items = q.order_by(order).offset((page - 1) * limit).limit(limit).all()

    return {
        "ledger": items,
        "pagination": build_pagination(page=page, limit=limit, total=total),
    }


def _reason_stats(db: Session, *, user_id=None):
    q = db.query(
        PointLedger.reason_code,
        func.coalesce(func.sum(PointLedger.delta_points), 0),
        func.count(PointLedger.id),
    )
    if user_id is not None:
        q = q.filter(PointLedger.user_id == user_id)
    rows = q.group_by(PointLedger.reason_code).order_by(PointLedger.reason_code.asc()).all()
    return [{"reason_code": r, "total_points": int(s or 0), "count": int(c)} for r, s, c in rows]


def get_point_summary(db: Session, user_id):
    balance = get_point_balance(db, user_id)

    earned, spent = (
        db.query(
            func.coalesce(func.sum(case((PointLedger.delta_points > 0, PointLedger.delta_points), else_=0)), 0),
            func.coalesce(func.sum(case((PointLedger.delta_points < 0, -PointLedger.delta_points), else_=0)), 0),
        )
        .filter(PointLedger.user_id == user_id)
        .one()
    )

    recent = (
        db.query(PointLedger)
        .filter(PointLedger.user_id == user_id)
        .order_by(PointLedger.occurred_at.desc(), PointLedger.created_at.desc())
        .limit(10)
        .all()
    )

    return {
        "current_balance": int(balance.points or 0),
        "total_earned": int(earned or 0),
        "total_spent": int(spent or 0),
        "recent_transactions": recent,
        "reason_stats": _reason_stats(db, user_id=user_id),
        "last_updated": balance.updated_at,
    }


def get_point_history(db: Session, user_id, *, start_date: datetime | None = None, end_date: datetime | None = None):
    q = db.query(PointLedger).filter(PointLedger.user_id == user_id)
    if start_date:
        q = q.filter(PointLedger.occurred_at >= _to_utc_naive(start_date))
    if end_date:
        q = q.filter(PointLedger.occurred_at <= _to_utc_naive(end_date))
    return q.order_by(PointLedger.occurred_at.desc()).all()


def manual_point_adjustment(db: Session, *, admin_user_id, payload: ManualAdjustmentCreate):
    def _adjust(s: Session):
        user = s.query(User).filter(User.id == payload.user_id).first()
        if not user:
            raise NotFoundError("User not found")

        now = utcnow()
        ref_id = f"admin_{admin_user_id}_{int(now.replace(tzinfo=timezone.utc).timestamp() * 1000)}"
        entry = append_ledger_entry(
            s,
            user_id=user.id,
            ref_table=MANUAL_ADJUSTMENT_REF,
            ref_id=ref_id,
            delta_points=payload.delta_points,
            reason_code=payload.reason_code,
            occurred_at=now,
        )
        if entry is None:
            raise ConflictError("Adjustment already recorded; retry")

        log_admin_action(
            s,
            admin_user_id=admin_user_id,
            action="POINTS_ADJUSTED",
            target_table="point_ledger",
            target_id=str(entry.id),
            details={
                "userId": str(user.id),
                "deltaPoints": payload.delta_points,
                "reasonCode": payload.reason_code,
                "description": payload.description,
            },
        )
        return entry

    entry = with_transaction(db, _adjust)
    db.refresh(entry)

    logger.info(
        "manual point adjustment",
        extra={
            "admin_user_id": str(admin_user_id),
            "user_id": str(payload.user_id),
            "delta_points": payload.delta_points,
            "reason_code": payload.reason_code,
        },
    )

    return {
        "point_ledger": entry,
        "new_balance": _current_points(db, payload.user_id),
        "adjustment": {
            "userId": str(payload.user_id),
            "deltaPoints": payload.delta_points,
            "reasonCode": payload.reason_code,
            "description": payload.description,
            "adminUserId": str(admin_user_id),
        },
    }


def get_point_stats(db: Session):
    users_with_points = db.query(func.count(PointBalance.user_id)).filter(PointBalance.points > 0).scalar()
    circulation = db.query(func.coalesce(func.sum(PointBalance.points), 0)).scalar()
    recent = db.query(PointLedger).order_by(PointLedger.created_at.desc()).limit(20).all()
    return {
        "total_users_with_points": int(users_with_points or 0),
        "total_points_in_circulation": int(circulation or 0),
        "points_by_reason": _reason_stats(db),
        "recent_activity": recent,
    }


# ─── Rules ──────────────────────────────────────────────────────────


def list_point_rules(db: Session, *, active_only: bool = False):
    q = db.query(PointRule)
    if active_only:
        now = utcnow()
        q = q.filter(PointRule.active_from <= now).filter(
            (PointRule.active_to.is_(None)) | (PointRule.active_to >= now)
        )
    return q.order_by(PointRule.active_from.asc()).all()


def create_point_rule(db: Session, *, admin_user_id, payload: PointRuleCreate):
    if db.query(PointRule).filter(PointRule.code == payload.code).first():
        raise ConflictError(f"Point rule {payload.code} already exists")

    rule = PointRule(
        code=payload.code,
        description=payload.description,
        points_expr=payload.points_expr.model_dump(),
        active_from=_to_utc_naive(payload.active_from),
        active_to=_to_utc_naive(payload.active_to),
        created_at=utcnow(),
    )
    db.add(rule)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise ConflictError(f"Point rule {payload.code} already exists")

    log_admin_action(
        db,
        admin_user_id=admin_user_id,
        action="POINT_RULE_CREATED",
        target_table="point_rules",
        target_id=rule.code,
        details={"pointsExpr": rule.points_expr},
    )
    db.commit()
    db.refresh(rule)
    return rule


def update_point_rule(db: Session, code: str, *, admin_user_id, payload: PointRuleUpdate):
    rule = db.query(PointRule).filter(PointRule.code == code).first()
    if not rule:
        raise NotFoundError(f"Point rule {code} not found")

    data = payload.model_dump(exclude_unset=True)
    if "description" in data and data["description"] is not None:
        rule.description = data["description"]
    if "points_expr" in data and payload.points_expr is not None:
        rule.points_expr = payload.points_expr.model_dump()
    if "active_from" in data and data["active_from"] is not None:
        rule.active_from = _to_utc_naive(data["active_from"])
    if "active_to" in data:
        rule.active_to = _to_utc_naive(data["active_to"])

    log_admin_action(
        db,
        admin_user_id=admin_user_id,
        action="POINT_RULE_UPDATED",
        target_table="point_rules",
        target_id=rule.code,
        details={k: (v.isoformat() if isinstance(v, datetime) else v) for k, v in data.items()},
    )
    db.commit()
    db.refresh(rule)
    return rule
