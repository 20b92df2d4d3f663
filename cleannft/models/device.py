import uuid
from sqlalchemy import Column, JSON, String, TIMESTAMP, ForeignKey
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func
from cleannft.db import Base


class Device(Base):
    __tablename__ = "devices"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    hw_id = Column(String(100), nullable=False, unique=True)
    station_code = Column(String(50), ForeignKey("recycling_stations.code"), nullable=False)

    status = Column(String(20), nullable=False, default="ACTIVE")  # ACTIVE / INACTIVE / MAINTENANCE / ERROR

    metadata_ = Column("metadata", JSON, nullable=True)

    created_at = Column(TIMESTAMP, server_default=func.now())
