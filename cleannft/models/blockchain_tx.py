import uuid
from sqlalchemy import Column, String, TIMESTAMP, ForeignKey
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func
from cleannft.db import Base


class BlockchainTx(Base):
    __tablename__ = "blockchain_txs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    related_table = Column(String(50), nullable=False)
    related_id = Column(String(100), nullable=False)

    network = Column(String(50), nullable=False)
    tx_hash = Column(String(100), nullable=True)

    status = Column(String(20), nullable=False, default="SUBMITTED")  # SUBMITTED / CONFIRMED / FAILED

    outbox_event_id = Column(UUID(as_uuid=True), ForeignKey("outbox_events.id"), nullable=True)

    submitted_at = Column(TIMESTAMP, server_default=func.now())
    confirmed_at = Column(TIMESTAMP, nullable=True)

    error = Column(String(2000), nullable=True)
