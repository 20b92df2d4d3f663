from datetime import datetime
from typing import Literal

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from cleannft.db import get_db
from cleannft.deps.auth import CurrentUser, require_admin
from cleannft.schemas.admin import (
    AdminActionList,
    DeviceCreate,
    DeviceOut,
    DeviceStatus,
    DeviceStatusUpdate,
    StationCreate,
    StationOut,
    SystemHealth,
)
from cleannft.schemas.blockchain_tx import BlockchainStats, BlockchainTxList, BlockchainTxOut, OutboxEventOut
from cleannft.services.admin_service import (
    create_device,
    create_station,
    get_analytics,
    get_system_health,
    list_admin_actions,
    list_devices,
    list_stations,
    log_admin_action,
    update_device_status,
)
from cleannft.services.auth_service import cleanup_expired_sessions
from cleannft.services.tx_service import (
    get_blockchain_stats,
    get_blockchain_tx,
    list_blockchain_txs,
    retry_blockchain_tx,
)

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/health", response_model=SystemHealth)
def read_health(admin: CurrentUser = Depends(require_admin), db: Session = Depends(get_db)):
    return get_system_health(db)


@router.get("/analytics")
def read_analytics(admin: CurrentUser = Depends(require_admin), db: Session = Depends(get_db)):
    return get_analytics(db)


@router.get("/actions", response_model=AdminActionList)
def read_admin_actions(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    admin_user_id: UUID | None = Query(default=None, alias="adminUserId"),
    action: str | None = None,
    admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return list_admin_actions(db, page=page, limit=limit, admin_user_id=admin_user_id, action=action)


@router.post("/cleanup")
def run_cleanup(admin: CurrentUser = Depends(require_admin), db: Session = Depends(get_db)):
    deleted = cleanup_expired_sessions(db)
    log_admin_action(
        db,
        admin_user_id=admin.id,
        action="CLEANUP_EXPIRED_SESSIONS",
        target_table="auth_sessions",
        details={"deleted": deleted},
    )
    db.commit()
    return {"expiredSessionsDeleted": deleted}


# ─── Stations & devices ─────────────────────────────────────────────


@router.get("/stations", response_model=list[StationOut])
def read_stations(admin: CurrentUser = Depends(require_admin), db: Session = Depends(get_db)):
    return list_stations(db)


@router.post("/stations", response_model=StationOut, status_code=201)
def add_station(
    payload: StationCreate,
    admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return create_station(db, admin_user_id=admin.id, payload=payload)


@router.get("/devices", response_model=list[DeviceOut])
def read_devices(
    station_code: str | None = Query(default=None, alias="stationCode"),
    status: DeviceStatus | None = None,
    admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return list_devices(db, station_code=station_code, status=status)


@router.post("/devices", response_model=DeviceOut, status_code=201)
def add_device(
    payload: DeviceCreate,
    admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return create_device(db, admin_user_id=admin.id, payload=payload)


@router.put("/devices/{device_id}/status", response_model=DeviceOut)
def set_device_status(
    device_id: UUID,
    payload: DeviceStatusUpdate,
    admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return update_device_status(db, device_id, admin_user_id=admin.id, status=payload.status)


# ─── Blockchain ─────────────────────────────────────────────────────


@router.get("/blockchain/stats", response_model=BlockchainStats)
def read_blockchain_stats(admin: CurrentUser = Depends(require_admin), db: Session = Depends(get_db)):
    return get_blockchain_stats(db)


@router.get("/blockchain/txs", response_model=BlockchainTxList)
def read_blockchain_txs(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    related_table: str | None = Query(default=None, alias="relatedTable"),
    related_id: str | None = Query(default=None, alias="relatedId"),
    network: str | None = None,
    status: Literal["SUBMITTED", "CONFIRMED", "FAILED"] | None = None,
    start_date: datetime | None = Query(default=None, alias="startDate"),
    end_date: datetime | None = Query(default=None, alias="endDate"),
    admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return list_blockchain_txs(
        db,
        page=page,
        limit=limit,
        related_table=related_table,
        related_id=related_id,
        network=network,
        status=status,
        start_date=start_date,
        end_date=end_date,
    )


@router.get("/blockchain/txs/{tx_id}", response_model=BlockchainTxOut)
def read_blockchain_tx(tx_id: UUID, admin: CurrentUser = Depends(require_admin), db: Session = Depends(get_db)):
    return get_blockchain_tx(db, tx_id)


@router.post("/blockchain/txs/{tx_id}/retry", response_model=OutboxEventOut, status_code=201)
def retry_tx(tx_id: UUID, admin: CurrentUser = Depends(require_admin), db: Session = Depends(get_db)):
    return retry_blockchain_tx(db, tx_id, admin_user_id=admin.id)
