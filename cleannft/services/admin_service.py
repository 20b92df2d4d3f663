import logging

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from cleannft.config import settings
from cleannft.db import check_database_health, utcnow
from cleannft.errors import ConflictError, NotFoundError
from cleannft.models.admin_action import AdminAction
from cleannft.models.auth_session import AuthSession
from cleannft.models.blockchain_tx import BlockchainTx
from cleannft.models.device import Device
from cleannft.models.nft_claim import NftClaim
from cleannft.models.nft_mint import NftMint
from cleannft.models.outbox_event import OutboxEvent
from cleannft.models.point_balance import PointBalance
from cleannft.models.recycling_station import RecyclingStation
from cleannft.models.user import User
from cleannft.models.waste_event import WasteEvent
from cleannft.schemas.admin import DeviceCreate, StationCreate
from cleannft.schemas.common import build_pagination


logger = logging.getLogger(__name__)


def log_admin_action(
    db: Session,
    *,
    admin_user_id,
    action: str,
    target_table: str | None = None,
    target_id: str | None = None,
    details: dict | None = None,
):
    """Audit trail write. Never fails the caller's operation."""
    try:
        with db.begin_nested():
            db.add(
                AdminAction(
                    admin_user_id=admin_user_id,
                    action=action,
                    target_table=target_table,
                    target_id=target_id,
                    details=details,
                    occurred_at=utcnow(),
                )
            )
            db.flush()
    except SQLAlchemyError:
        logger.exception(
            "failed to record admin action",
            extra={"admin_user_id": str(admin_user_id), "action": action, "target_id": target_id},
        )


def list_admin_actions(db: Session, *, page: int = 1, limit: int = 20, admin_user_id=None, action: str | None = None):
    q = db.query(AdminAction)
    if admin_user_id is not None:
        q = q.filter(AdminAction.admin_user_id == admin_user_id)
    if action:
        q = q.filter(AdminAction.action == action)
    total = q.count()
    items = q.order_by(AdminAction.occurred_at.desc()).offset((page - 1) * limit).limit(limit).all()
    return {"actions": items, "pagination": build_pagination(page=page, limit=limit, total=total)}


def get_system_health(db: Session):
    database = check_database_health(db)
    if not database:
        return {
            "database": False,
            "pending_outbox_events": 0,
            "failed_transactions": 0,
            "expired_sessions": 0,
            "error_devices": 0,
            "overall": False,
        }

    now = utcnow()
    pending = db.query(func.count(OutboxEvent.id)).filter(OutboxEvent.processed_at.is_(None)).scalar() or 0
    failed = db.query(func.count(BlockchainTx.id)).filter(BlockchainTx.status == "FAILED").scalar() or 0
    expired = db.query(func.count(AuthSession.id)).filter(AuthSession.expires_at < now).scalar() or 0
    error_devices = db.query(func.count(Device.id)).filter(Device.status == "ERROR").scalar() or 0

    overall = (
        database
        and pending < settings.health_max_pending_outbox
        and failed < settings.health_max_failed_txs
    )
    return {
        "database": database,
        "pending_outbox_events": int(pending),
        "failed_transactions": int(failed),
        "expired_sessions": int(expired),
        "error_devices": int(error_devices),
        "overall": bool(overall),
    }


def get_analytics(db: Session):
    waste_count, waste_weight = db.query(
        func.count(WasteEvent.id), func.coalesce(func.sum(WasteEvent.weight_grams), 0)
    ).one()

    claims_by_status = dict(db.query(NftClaim.status, func.count(NftClaim.id)).group_by(NftClaim.status).all())
    mints_by_status = dict(db.query(NftMint.status, func.count(NftMint.id)).group_by(NftMint.status).all())

    return {
        "users": {
            "total": db.query(func.count(User.id)).scalar() or 0,
            "active": db.query(func.count(User.id)).filter(User.is_active.is_(True)).scalar() or 0,
        },
        "waste": {"totalEvents": int(waste_count or 0), "totalWeightGrams": float(waste_weight or 0)},
        "points": {
            "inCirculation": int(db.query(func.coalesce(func.sum(PointBalance.points), 0)).scalar() or 0),
        },
        "nft": {"mintsByStatus": mints_by_status, "claimsByStatus": claims_by_status},
        "infrastructure": {
            "stations": db.query(func.count(RecyclingStation.code)).scalar() or 0,
            "devices": dict(db.query(Device.status, func.count(Device.id)).group_by(Device.status).all()),
        },
    }


# ─── Stations & devices ─────────────────────────────────────────────


def list_stations(db: Session):
    return db.query(RecyclingStation).order_by(RecyclingStation.code.asc()).all()


def create_station(db: Session, *, admin_user_id, payload: StationCreate):
    if db.query(RecyclingStation).filter(RecyclingStation.code == payload.code).first():
        raise ConflictError(f"Recycling station {payload.code} already exists")

    station = RecyclingStation(
        code=payload.code,
        name=payload.name,
        location=payload.location,
        metadata_=payload.metadata,
        created_at=utcnow(),
    )
    db.add(station)
    db.flush()
    log_admin_action(
        db,
        admin_user_id=admin_user_id,
        action="STATION_CREATED",
        target_table="recycling_stations",
        target_id=station.code,
    )
    db.commit()
    db.refresh(station)
    return station


def list_devices(db: Session, *, station_code: str | None = None, status: str | None = None):
    q = db.query(Device)
    if station_code:
        q = q.filter(Device.station_code == station_code)
    if status:
        q = q.filter(Device.status == status)
    return q.order_by(Device.hw_id.asc()).all()


def create_device(db: Session, *, admin_user_id, payload: DeviceCreate):
    if not db.query(RecyclingStation).filter(RecyclingStation.code == payload.station_code).first():
        raise NotFoundError(f"Recycling station {payload.station_code} not found")
    if db.query(Device).filter(Device.hw_id == payload.hw_id).first():
        raise ConflictError(f"Device {payload.hw_id} already exists")

    device = Device(
        hw_id=payload.hw_id,
        station_code=payload.station_code,
        status=payload.status,
        metadata_=payload.metadata,
        created_at=utcnow(),
    )
    db.add(device)
    db.flush()
    log_admin_action(
        db,
        admin_user_id=admin_user_id,
        action="DEVICE_CREATED",
        target_table="devices",
        target_id=str(device.id),
        details={"hwId": device.hw_id, "stationCode": device.station_code},
    )
    db.commit()
    db.refresh(device)
    return device


def update_device_status(db: Session, device_id, *, admin_user_id, status: str):
    device = db.query(Device).filter(Device.id == device_id).first()
    if not device:
        raise NotFoundError("Device not found")

    previous = device.status
    device.status = status
    log_admin_action(
        db,
        admin_user_id=admin_user_id,
        action="DEVICE_STATUS_UPDATED",
        target_table="devices",
        target_id=str(device.id),
        details={"from": previous, "to": status},
    )
    db.commit()
    db.refresh(device)
    return device
