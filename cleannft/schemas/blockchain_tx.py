from datetime import datetime
from typing import Any, Dict, Optional

from uuid import UUID

from cleannft.schemas.common import ApiModel, Pagination


class BlockchainTxOut(ApiModel):
    id: UUID
    related_table: str
    related_id: str
    network: str
    tx_hash: Optional[str] = None
    status: str
    outbox_event_id: Optional[UUID] = None
    submitted_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    error: Optional[str] = None


class BlockchainTxList(ApiModel):
    transactions: list[BlockchainTxOut]
    pagination: Pagination


class OutboxEventOut(ApiModel):
    id: UUID
    event_type: str
    aggregate: str
    aggregate_id: str
    payload: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None


class BlockchainStats(ApiModel):
    total_transactions: int
    by_status: Dict[str, int]
    by_network: Dict[str, int]
    pending_outbox_events: int
