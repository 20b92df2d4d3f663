import logging
from datetime import datetime, timezone

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cleannft.db import utcnow, with_transaction
from cleannft.errors import NotFoundError
from cleannft.models.device import Device
from cleannft.models.recycling_station import RecyclingStation
from cleannft.models.waste_event import WasteEvent
from cleannft.schemas.common import build_pagination
from cleannft.schemas.waste_event import WasteEventCreate
from cleannft.services.idempotency import derive_waste_event_nonce, resolve_nonce
from cleannft.services.rule_engine import award_points_for_waste_event


logger = logging.getLogger(__name__)

WASTE_SORT_COLUMNS = {
    "occurredAt": WasteEvent.occurred_at,
    "createdAt": WasteEvent.created_at,
    "weightGrams": WasteEvent.weight_grams,
}


def _to_utc_naive(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def _find_existing_event(db: Session, *, device_id, idempotency_key: str):
    return (
        db.query(WasteEvent)
        .filter(WasteEvent.device_id == device_id)
        .filter(WasteEvent.idempotency_key == idempotency_key)
        .first()
    )


def _record_waste_event(db: Session, payload: WasteEventCreate, user_id=None):
    station = None
    if payload.station_code:
        station = db.query(RecyclingStation).filter(RecyclingStation.code == payload.station_code).first()
        if not station:
            raise NotFoundError(f"Recycling station {payload.station_code} not found")

    device = None
    if payload.device_hw_id:
        device = db.query(Device).filter(Device.hw_id == payload.device_hw_id).first()
        if not device:
            raise NotFoundError(f"Device {payload.device_hw_id} not found")

    occurred_at = _to_utc_naive(payload.occurred_at) if payload.occurred_at else utcnow()
    raw_payload = dict(payload.raw_payload or {})

    idempotency_key = None
    if device is not None:
        nonce = resolve_nonce(raw_payload.get("nonce"))
        idempotency_key = derive_waste_event_nonce(device.id, occurred_at, nonce)
        raw_payload["nonce"] = idempotency_key

    event = WasteEvent(
        user_id=user_id,
        station_code=station.code if station else None,
        device_id=device.id if device else None,
        occurred_at=occurred_at,
        material_type=payload.material_type,
        weight_grams=payload.weight_grams,
        source=payload.source,
        raw_payload=raw_payload,
        idempotency_key=idempotency_key,
        created_at=utcnow(),
    )

    try:
        with db.begin_nested():
            db.add(event)
            db.flush()
    except IntegrityError:
        if idempotency_key is None:
            raise
        existing = _find_existing_event(db, device_id=device.id, idempotency_key=idempotency_key)
        if existing is None:
            raise
        logger.info(
            "duplicate waste event suppressed",
            extra={"waste_event_id": str(existing.id), "device_id": str(device.id), "idempotency_key": idempotency_key},
        )
        return existing, 0

    points = award_points_for_waste_event(db, event, user_id=user_id)
    return event, points


def create_waste_event(db: Session, payload: WasteEventCreate, *, user_id=None):
    """
    Record a waste event and award its points in one transaction.

    A resubmission resolving to the same device idempotency key returns the
    stored event with 0 points instead of failing.
    """
    event, points = with_transaction(db, lambda s: _record_waste_event(s, payload, user_id))
    db.refresh(event)

    logger.info(
        "waste event recorded",
        extra={
            "waste_event_id": str(event.id),
            "user_id": str(user_id) if user_id else None,
            "station_code": event.station_code,
            "points_awarded": points,
        },
    )
    return event, points


def get_waste_event(db: Session, event_id):
    event = db.query(WasteEvent).filter(WasteEvent.id == event_id).first()
    if not event:
        raise NotFoundError("Waste event not found")
    return event


def list_waste_events(
    db: Session,
    *,
    page: int = 1,
    limit: int = 20,
    sort_by: str = "occurredAt",
    sort_order: str = "desc",
    user_id=None,
    station_code: str | None = None,
    device_id=None,
    material_type: str | None = None,
    source: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
):
    q = db.query(WasteEvent)
    if user_id is not None:
        q = q.filter(WasteEvent.user_id == user_id)
    if station_code:
        q = q.filter(WasteEvent.station_code == station_code)
    if device_id is not None:
        q = q.filter(WasteEvent.device_id == device_id)
    if material_type:
        q = q.filter(WasteEvent.material_type == material_type)
    if source:
        q = q.filter(WasteEvent.source == source)
    if start_date:
        q = q.filter(WasteEvent.occurred_at >= _to_utc_naive(start_date))
    if end_date:
        q = q.filter(WasteEvent.occurred_at <= _to_utc_naive(end_date))

    total = q.count()

    column = WASTE_SORT_COLUMNS.get(sort_by, WasteEvent.occurred_at)
    order = column.asc() if sort_order == "asc" else column.desc()
    items = q.order_by(order).offset((page - 1) * limit).limit(limit).all()

    return {
        "waste_events": items,
        "pagination": build_pagination(page=page, limit=limit, total=total),
    }


def get_waste_stats(db: Session, *, user_id=None, station_code: str | None = None):
    def scoped(q):
        if user_id is not None:
            q = q.filter(WasteEvent.user_id == user_id)
        if station_code:
            q = q.filter(WasteEvent.station_code == station_code)
        return q

    total_events, total_weight = scoped(
        db.query(func.count(WasteEvent.id), func.coalesce(func.sum(WasteEvent.weight_grams), 0))
    ).one()

    material_rows = scoped(
        db.query(
            WasteEvent.material_type,
            func.count(WasteEvent.id),
            func.coalesce(func.sum(WasteEvent.weight_grams), 0),
        )
    ).group_by(WasteEvent.material_type).all()

    source_rows = scoped(
        db.query(WasteEvent.source, func.count(WasteEvent.id))
    ).group_by(WasteEvent.source).all()

    recent = scoped(db.query(WasteEvent)).order_by(WasteEvent.occurred_at.desc()).limit(10).all()

    return {
        "total_events": int(total_events or 0),
        "total_weight_grams": float(total_weight or 0),
        "material_stats": [
            {"materialType": m, "count": int(c), "totalWeightGrams": float(w or 0)}
            for m, c, w in material_rows
        ],
        "source_stats": [{"source": s, "count": int(c)} for s, c in source_rows],
        "recent_events": recent,
    }
