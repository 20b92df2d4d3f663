import uuid
from sqlalchemy import Column, JSON, String, TIMESTAMP, ForeignKey
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func
from cleannft.db import Base


class AdminAction(Base):
    __tablename__ = "admin_actions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    admin_user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False)

    action = Column(String(100), nullable=False)
    target_table = Column(String(50), nullable=True)
    target_id = Column(String(100), nullable=True)

    details = Column(JSON, nullable=True)

    occurred_at = Column(TIMESTAMP, server_default=func.now())
