import uuid
from sqlalchemy import Column, JSON, Numeric, String, TIMESTAMP, ForeignKey, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func
from cleannft.db import Base


class WasteEvent(Base):
    __tablename__ = "waste_events"

    __table_args__ = (
        UniqueConstraint("device_id", "idempotency_key", name="uq_waste_events_device_idempotency_key"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    station_code = Column(String(50), ForeignKey("recycling_stations.code"), nullable=True)
    device_id = Column(UUID(as_uuid=True), ForeignKey("devices.id"), nullable=True)

    occurred_at = Column(TIMESTAMP, nullable=False)

    material_type = Column(String(100), nullable=False)
    weight_grams = Column(Numeric(12, 2), nullable=False)
    source = Column(String(10), nullable=False)  # IOT / QR / MANUAL

    raw_payload = Column(JSON, nullable=False, default=dict)

    # Derived nonce hash; only set for device submissions.
    idempotency_key = Column(String(32), nullable=True)

    created_at = Column(TIMESTAMP, server_default=func.now())
