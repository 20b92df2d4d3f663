from sqlalchemy import Column, JSON, String, TIMESTAMP
from sqlalchemy.sql import func
from cleannft.db import Base


class RecyclingStation(Base):
    __tablename__ = "recycling_stations"

    code = Column(String(50), primary_key=True)

    name = Column(String(200), nullable=False)
    location = Column(String(500), nullable=False)

    metadata_ = Column("metadata", JSON, nullable=True)

    created_at = Column(TIMESTAMP, server_default=func.now())
