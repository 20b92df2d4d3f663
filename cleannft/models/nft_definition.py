from sqlalchemy import Column, Integer, JSON, String, Text, TIMESTAMP, ForeignKey
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func
from cleannft.db import Base


class NftDefinition(Base):
    __tablename__ = "nft_definitions"

    code = Column(String(50), primary_key=True)

    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)

    image_ipfs_cid = Column(String(100), nullable=True)
    metadata_ipfs_cid = Column(String(100), nullable=True)

    attributes = Column(JSON, nullable=False, default=dict)

    supply_cap = Column(Integer, nullable=True)

    created_by = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)

    created_at = Column(TIMESTAMP, server_default=func.now())
    updated_at = Column(TIMESTAMP, server_default=func.now(), onupdate=func.now())
