import uuid
from sqlalchemy import BigInteger, Column, String, TIMESTAMP, ForeignKey, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func
from cleannft.db import Base


class NftMint(Base):
    __tablename__ = "nft_mints"

    __table_args__ = (UniqueConstraint("nft_def_code", "token_id", name="uq_nft_mints_def_token"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    nft_def_code = Column(String(50), ForeignKey("nft_definitions.code"), nullable=False)
    token_id = Column(BigInteger, nullable=False)

    contract = Column(String(100), nullable=False)
    network = Column(String(50), nullable=False)
    owner_address = Column(String(100), nullable=True)

    status = Column(String(20), nullable=False, default="MINTED")  # MINTED / TRANSFERRED / BURNED

    # Set atomically by the claim allocator; NULL means the mint is still in the pool.
    allocated_to_user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    allocated_at = Column(TIMESTAMP, nullable=True)

    minted_at = Column(TIMESTAMP, server_default=func.now())
