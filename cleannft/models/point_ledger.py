import uuid
from sqlalchemy import Column, Integer, String, TIMESTAMP, ForeignKey, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func
from cleannft.db import Base


class PointLedger(Base):
    __tablename__ = "point_ledger"

    __table_args__ = (
        UniqueConstraint("ref_table", "ref_id", "reason_code", name="uq_point_ledger_ref_reason"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False)

    ref_table = Column(String(50), nullable=False)
    ref_id = Column(String(100), nullable=False)

    delta_points = Column(Integer, nullable=False)
    reason_code = Column(String(50), nullable=False)

    occurred_at = Column(TIMESTAMP, nullable=False)
    created_at = Column(TIMESTAMP, server_default=func.now())
