import logging
from datetime import datetime

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cleannft.db import utcnow
from cleannft.models.point_balance import PointBalance
from cleannft.models.point_ledger import PointLedger


logger = logging.getLogger(__name__)


def _increment_balance(db: Session, *, user_id, delta: int, now: datetime):
    result = db.execute(
        update(PointBalance)
        .where(PointBalance.user_id == user_id)
        .values(points=PointBalance.points + delta, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount:
        return

    try:
        with db.begin_nested():
            db.add(PointBalance(user_id=user_id, points=delta, updated_at=now))
            db.flush()
    except IntegrityError:
        # Another transaction created the row first.
        db.execute(
            update(PointBalance)
            .where(PointBalance.user_id == user_id)
            .values(points=PointBalance.points + delta, updated_at=now)
            .execution_options(synchronize_session=False)
        )


def append_ledger_entry(
    db: Session,
    *,
    user_id,
    ref_table: str,
    ref_id: str,
    delta_points: int,
    reason_code: str,
    occurred_at: datetime | None = None,
):
    """
    Insert one ledger row and apply its delta to the user's balance.

    Both writes share the caller's transaction. Returns None when a row with the
    same (ref_table, ref_id, reason_code) already exists; the balance is then
    left untouched.
    """
    now = utcnow()
    entry = PointLedger(
        user_id=user_id,
        ref_table=ref_table,
        ref_id=str(ref_id),
        delta_points=int(delta_points),
        reason_code=reason_code,
        occurred_at=occurred_at or now,
        created_at=now,
    )

    try:
        with db.begin_nested():
            db.add(entry)
            db.flush()
    except IntegrityError:
        existing = (
            db.query(PointLedger.id)
            .filter(PointLedger.ref_table == ref_table)
            .filter(PointLedger.ref_id == str(ref_id))
            .filter(PointLedger.reason_code == reason_code)
            .first()
        )
        if existing is None:
            raise
        logger.info(
            "ledger entry already recorded",
            extra={"ref_table": ref_table, "ref_id": str(ref_id), "reason_code": reason_code},
        )
        return None

    _increment_balance(db, user_id=user_id, delta=int(delta_points), now=now)
    return entry
