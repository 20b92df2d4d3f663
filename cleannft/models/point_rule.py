from sqlalchemy import Column, JSON, String, TIMESTAMP
from sqlalchemy.sql import func
from cleannft.db import Base


class PointRule(Base):
    __tablename__ = "point_rules"

    code = Column(String(50), primary_key=True)

    description = Column(String(500), nullable=False)

    # {"type": "per_kg" | "flat" | "percentage", "value": number}
    points_expr = Column(JSON, nullable=False)

    active_from = Column(TIMESTAMP, nullable=False)
    active_to = Column(TIMESTAMP, nullable=True)

    created_at = Column(TIMESTAMP, server_default=func.now())
