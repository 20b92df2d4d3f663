from datetime import datetime
from typing import Literal

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from cleannft.db import get_db
from cleannft.deps.auth import CurrentUser, get_current_user, get_optional_user, require_admin
from cleannft.errors import ForbiddenError
from cleannft.schemas.waste_event import (
    WasteEventCreate,
    WasteEventCreated,
    WasteEventList,
    WasteEventOut,
    WasteSource,
    WasteStats,
)
from cleannft.services.waste_service import (
    create_waste_event,
    get_waste_event,
    get_waste_stats,
    list_waste_events,
)

router = APIRouter(prefix="/waste-events", tags=["waste-events"])

WasteSortBy = Literal["occurredAt", "createdAt", "weightGrams"]
SortOrder = Literal["asc", "desc"]


@router.post("", response_model=WasteEventCreated, status_code=201)
def submit_waste_event(
    payload: WasteEventCreate,
    user: CurrentUser | None = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    event, points = create_waste_event(db, payload, user_id=user.id if user else None)
    return {"waste_event": event, "points_awarded": points}


@router.get("", response_model=WasteEventList)
def list_all_waste_events(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    sort_by: WasteSortBy = Query(default="occurredAt", alias="sortBy"),
    sort_order: SortOrder = Query(default="desc", alias="sortOrder"),
    user_id: UUID | None = Query(default=None, alias="userId"),
    station_code: str | None = Query(default=None, alias="stationCode"),
    device_id: UUID | None = Query(default=None, alias="deviceId"),
    material_type: str | None = Query(default=None, alias="materialType"),
    source: WasteSource | None = None,
    start_date: datetime | None = Query(default=None, alias="startDate"),
    end_date: datetime | None = Query(default=None, alias="endDate"),
    admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return list_waste_events(
        db,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
        user_id=user_id,
        station_code=station_code,
        device_id=device_id,
        material_type=material_type,
        source=source,
        start_date=start_date,
        end_date=end_date,
    )


@router.get("/my", response_model=WasteEventList)
def list_my_waste_events(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    sort_by: WasteSortBy = Query(default="occurredAt", alias="sortBy"),
    sort_order: SortOrder = Query(default="desc", alias="sortOrder"),
    material_type: str | None = Query(default=None, alias="materialType"),
    source: WasteSource | None = None,
    start_date: datetime | None = Query(default=None, alias="startDate"),
    end_date: datetime | None = Query(default=None, alias="endDate"),
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return list_waste_events(
        db,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
        user_id=user.id,
        material_type=material_type,
        source=source,
        start_date=start_date,
        end_date=end_date,
    )


@router.get("/stats", response_model=WasteStats)
def read_waste_stats(
    station_code: str | None = Query(default=None, alias="stationCode"),
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    # Admins see global stats; everyone else only their own.
    user_id = None if user.is_admin else user.id
    return get_waste_stats(db, user_id=user_id, station_code=station_code)


@router.get("/station/{station_code}", response_model=WasteEventList)
def list_station_waste_events(
    station_code: str,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    sort_by: WasteSortBy = Query(default="occurredAt", alias="sortBy"),
    sort_order: SortOrder = Query(default="desc", alias="sortOrder"),
    material_type: str | None = Query(default=None, alias="materialType"),
    source: WasteSource | None = None,
    start_date: datetime | None = Query(default=None, alias="startDate"),
    end_date: datetime | None = Query(default=None, alias="endDate"),
    admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return list_waste_events(
        db,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
        station_code=station_code,
        material_type=material_type,
        source=source,
        start_date=start_date,
        end_date=end_date,
    )


@router.get("/{event_id}", response_model=WasteEventOut)
def read_waste_event(
    event_id: UUID,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    event = get_waste_event(db, event_id)
    if not user.is_admin and event.user_id != user.id:
        raise ForbiddenError("Not allowed to view this waste event")
    return event
