import logging
from datetime import datetime, timezone

from sqlalchemy import func
from sqlalchemy.orm import Session

from cleannft.db import utcnow
from cleannft.errors import NotFoundError, ValidationError
from cleannft.models.blockchain_tx import BlockchainTx
from cleannft.models.outbox_event import OutboxEvent
from cleannft.schemas.common import build_pagination
from cleannft.services.admin_service import log_admin_action
from cleannft.services.outbox_processor import enqueue_outbox_event
from cleannft.services.settlement import SEND_TO_CHAIN


logger = logging.getLogger(__name__)


def _to_utc_naive(dt: datetime | None) -> datetime | None:
    if dt is None or dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def get_blockchain_tx(db: Session, tx_id):
    tx = db.query(BlockchainTx).filter(BlockchainTx.id == tx_id).first()
    if not tx:
        raise NotFoundError("Blockchain transaction not found")
    return tx


def list_blockchain_txs(
    db: Session,
    *,
    page: int = 1,
    limit: int = 20,
    related_table: str | None = None,
    related_id: str | None = None,
    network: str | None = None,
    status: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
):
    q = db.query(BlockchainTx)
    if related_table:
        q = q.filter(BlockchainTx.related_table == related_table)
    if related_id:
        q = q.filter(BlockchainTx.related_id == related_id)
    if network:
        q = q.filter(BlockchainTx.network == network)
    if status:
        q = q.filter(BlockchainTx.status == status)
    if start_date:
        q = q.filter(BlockchainTx.submitted_at >= _to_utc_naive(start_date))
    if end_date:
        q = q.filter(BlockchainTx.submitted_at <= _to_utc_naive(end_date))

    total = q.count()
    items = q.order_by(BlockchainTx.submitted_at.desc()).offset((page - 1) * limit).limit(limit).all()
    return {"transactions": items, "pagination": build_pagination(page=page, limit=limit, total=total)}


def get_blockchain_stats(db: Session):
    by_status = dict(db.query(BlockchainTx.status, func.count(BlockchainTx.id)).group_by(BlockchainTx.status).all())
    by_network = dict(db.query(BlockchainTx.network, func.count(BlockchainTx.id)).group_by(BlockchainTx.network).all())
    pending = db.query(func.count(OutboxEvent.id)).filter(OutboxEvent.processed_at.is_(None)).scalar() or 0
    return {
        "total_transactions": int(sum(by_status.values())),
        "by_status": {k: int(v) for k, v in by_status.items()},
        "by_network": {k: int(v) for k, v in by_network.items()},
        "pending_outbox_events": int(pending),
    }


def retry_blockchain_tx(db: Session, tx_id, *, admin_user_id=None) -> OutboxEvent:
    """Re-enqueue settlement for a FAILED transaction. The failed row is left as is."""
    tx = get_blockchain_tx(db, tx_id)
    if tx.status != "FAILED":
        raise ValidationError("Only failed transactions can be retried")

    original_payload = {}
    if tx.outbox_event_id is not None:
        original = db.query(OutboxEvent).filter(OutboxEvent.id == tx.outbox_event_id).first()
        if original is not None:
            original_payload = dict(original.payload or {})

    payload = {
        **original_payload,
        "network": original_payload.get("network") or tx.network,
        "retryTxId": str(tx.id),
        "originalTxHash": tx.tx_hash,
    }
    event = enqueue_outbox_event(
        db,
        event_type=SEND_TO_CHAIN,
        aggregate=tx.related_table,
        aggregate_id=tx.related_id,
        payload=payload,
    )

    if admin_user_id is not None:
        log_admin_action(
            db,
            admin_user_id=admin_user_id,
            action="BLOCKCHAIN_TX_RETRIED",
            target_table="blockchain_txs",
            target_id=str(tx.id),
            details={"outboxEventId": str(event.id)},
        )

    db.commit()
    db.refresh(event)

    logger.info(
        "blockchain transaction retry enqueued",
        extra={"tx_id": str(tx.id), "outbox_event_id": str(event.id), "related_table": tx.related_table},
    )
    return event


def record_blockchain_tx(
    db: Session,
    *,
    related_table: str,
    related_id,
    network: str,
    status: str,
    tx_hash: str | None = None,
    error: str | None = None,
    outbox_event_id=None,
) -> BlockchainTx:
    now = utcnow()
    tx = BlockchainTx(
        related_table=related_table,
        related_id=str(related_id),
        network=network,
        tx_hash=tx_hash,
        status=status,
        outbox_event_id=outbox_event_id,
        submitted_at=now,
        confirmed_at=now if status == "CONFIRMED" else None,
        error=error,
    )
    db.add(tx)
    db.flush()
    return tx
