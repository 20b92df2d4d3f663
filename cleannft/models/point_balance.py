from sqlalchemy import Column, Integer, TIMESTAMP, ForeignKey
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func
from cleannft.db import Base


class PointBalance(Base):
    __tablename__ = "point_balances"

    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)

    points = Column(Integer, nullable=False, default=0)

    updated_at = Column(TIMESTAMP, server_default=func.now(), onupdate=func.now())
