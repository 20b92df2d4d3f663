import logging
import math
from datetime import datetime
from decimal import Decimal

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import or_
from sqlalchemy.orm import Session

from cleannft.db import utcnow
from cleannft.models.point_rule import PointRule
from cleannft.models.user import User
from cleannft.models.waste_event import WasteEvent
from cleannft.schemas.point import points_expr_adapter
from cleannft.services.ledger_service import append_ledger_entry


logger = logging.getLogger(__name__)

FIRST_DUMP_BONUS = "FIRST_DUMP_BONUS"
WASTE_EVENTS_REF = "waste_events"

# Percentage rules are a share of this implicit rate.
BASE_POINTS_PER_KG = 10


def compute_rule_points(points_expr, weight_grams) -> int:
    expr = points_expr_adapter.validate_python(points_expr)
    value = Decimal(str(expr.value))
    kg = Decimal(str(weight_grams)) / Decimal(1000)

    if expr.type == "per_kg":
        return math.floor(kg * value)
    if expr.type == "flat":
        return math.floor(value)
    if expr.type == "percentage":
        return math.floor(math.floor(kg) * BASE_POINTS_PER_KG * value / Decimal(100))
    return 0


def get_active_rules(db: Session, *, now: datetime):
    return (
        db.query(PointRule)
        .filter(PointRule.active_from <= now)
        .filter(or_(PointRule.active_to.is_(None), PointRule.active_to >= now))
        .order_by(PointRule.active_from.asc(), PointRule.code.asc())
        .all()
    )


def _is_first_waste_event(db: Session, *, user_id) -> bool:
    # Concurrent submissions by one user queue on the user row, so the count sees committed events.
    db.query(User.id).filter(User.id == user_id).with_for_update().first()
    count = db.query(WasteEvent).filter(WasteEvent.user_id == user_id).count()
    return count <= 1


def award_points_for_waste_event(
    db: Session,
    waste_event: WasteEvent,
    *,
    user_id=None,
    now: datetime | None = None,
) -> int:
    """
    Apply every active point rule to a freshly inserted waste event.

    One ledger row per rule with a positive result. Returns the sum of the rows
    actually written, so a replayed award reports 0.
    """
    if user_id is None:
        return 0

    now = now or utcnow()
    rules = get_active_rules(db, now=now)
    if not rules:
        return 0

    first_event = None
    total = 0

    for rule in rules:
        if rule.code == FIRST_DUMP_BONUS:
            if first_event is None:
                first_event = _is_first_waste_event(db, user_id=user_id)
            if not first_event:
                continue

        try:
            points = compute_rule_points(rule.points_expr, waste_event.weight_grams)
        except PydanticValidationError:
            logger.warning(
                "skipping point rule with invalid expression",
                extra={"rule_code": rule.code, "points_expr": rule.points_expr},
            )
            continue

        if points <= 0:
            continue

        entry = append_ledger_entry(
            db,
            user_id=user_id,
            ref_table=WASTE_EVENTS_REF,
            ref_id=str(waste_event.id),
            delta_points=points,
            reason_code=rule.code,
            occurred_at=waste_event.occurred_at,
        )
        if entry is not None:
            total += points

    logger.info(
        "points awarded for waste event",
        extra={"waste_event_id": str(waste_event.id), "user_id": str(user_id), "points": total},
    )
    return total
