import uuid
from sqlalchemy import Column, JSON, String, TIMESTAMP
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func
from cleannft.db import Base


class OutboxEvent(Base):
    __tablename__ = "outbox_events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    event_type = Column(String(30), nullable=False)  # SEND_TO_CHAIN / PUSH_TO_IPFS

    aggregate = Column(String(50), nullable=False)
    aggregate_id = Column(String(100), nullable=False)

    payload = Column(JSON, nullable=False, default=dict)

    created_at = Column(TIMESTAMP, server_default=func.now())
    processed_at = Column(TIMESTAMP, nullable=True)

    locked_at = Column(TIMESTAMP, nullable=True)
    locked_by = Column(String(100), nullable=True)
