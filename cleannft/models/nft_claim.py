import uuid
from sqlalchemy import Column, String, TIMESTAMP, ForeignKey, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func
from cleannft.db import Base


class NftClaim(Base):
    __tablename__ = "nft_claims"

    __table_args__ = (UniqueConstraint("user_id", "nft_mint_id", name="uq_nft_claims_user_mint"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False)
    nft_mint_id = Column(UUID(as_uuid=True), ForeignKey("nft_mints.id"), nullable=False)

    claim_type = Column(String(50), nullable=False)
    status = Column(String(20), nullable=False, default="PENDING")  # PENDING / COMPLETED / FAILED

    claimed_at = Column(TIMESTAMP, server_default=func.now())
    updated_at = Column(TIMESTAMP, server_default=func.now(), onupdate=func.now())
