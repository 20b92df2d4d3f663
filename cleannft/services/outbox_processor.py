from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timedelta

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from cleannft.config import configure_logging, settings
from cleannft.db import SessionLocal, utcnow, with_transaction
from cleannft.models.blockchain_tx import BlockchainTx
from cleannft.models.nft_claim import NftClaim
from cleannft.models.nft_definition import NftDefinition
from cleannft.models.nft_mint import NftMint
from cleannft.models.outbox_event import OutboxEvent
from cleannft.services.settlement import (
    PUSH_TO_IPFS,
    SEND_TO_CHAIN,
    SettlementGateway,
    SettlementRequest,
    SettlementResult,
    build_settlement_gateway,
)


logger = logging.getLogger(__name__)

NFT_CLAIMS_AGGREGATE = "nft_claims"
NFT_DEFINITIONS_AGGREGATE = "nft_definitions"


def enqueue_outbox_event(db: Session, *, event_type: str, aggregate: str, aggregate_id, payload: dict) -> OutboxEvent:
    event = OutboxEvent(
        event_type=event_type,
        aggregate=aggregate,
        aggregate_id=str(aggregate_id),
        payload=payload,
        created_at=utcnow(),
    )
    db.add(event)
    db.flush()
    return event


def _claim_pending_events(
    db: Session,
    *,
    now: datetime,
    worker_id: str,
    batch_size: int,
    lock_ttl_seconds: int,
):
    lock_expired_before = now - timedelta(seconds=int(lock_ttl_seconds))

    q = (
        db.query(OutboxEvent)
        .filter(OutboxEvent.processed_at.is_(None))
        .filter(or_(OutboxEvent.locked_at.is_(None), OutboxEvent.locked_at < lock_expired_before))
        .order_by(OutboxEvent.created_at.asc())
        .with_for_update(skip_locked=True)
        .limit(batch_size)
    )

    events = q.all()
    for event in events:
        event.locked_at = now
        event.locked_by = worker_id

    return events


def _as_uuid(value):
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def _apply_success(db: Session, event: OutboxEvent, result: SettlementResult, now: datetime):
    if event.event_type == SEND_TO_CHAIN and event.aggregate == NFT_CLAIMS_AGGREGATE:
        claim_id = _as_uuid(event.aggregate_id)
        claim = db.query(NftClaim).filter(NftClaim.id == claim_id).first() if claim_id else None
        if claim is None or claim.status != "PENDING":
            return
        claim.status = "COMPLETED"
        claim.updated_at = now
        mint = db.query(NftMint).filter(NftMint.id == claim.nft_mint_id).first()
        if mint is not None:
            mint.status = "TRANSFERRED"
            to_wallet = (event.payload or {}).get("toWallet")
            if to_wallet:
                mint.owner_address = to_wallet

    elif event.event_type == PUSH_TO_IPFS and event.aggregate == NFT_DEFINITIONS_AGGREGATE:
        definition = db.query(NftDefinition).filter(NftDefinition.code == event.aggregate_id).first()
        if definition is not None:
            definition.metadata_ipfs_cid = result.tx_hash


def record_settlement_outcome(db: Session, *, event_id, result: SettlementResult) -> BlockchainTx | None:
    """
    Terminalize one outbox event with the gateway's result.

    The processed_at stamp is conditional, so an event already closed by
    another worker or by an admin finalize gets no second BlockchainTx.
    """
    now = utcnow()
    marked = db.execute(
        update(OutboxEvent)
        .where(OutboxEvent.id == event_id)
        .where(OutboxEvent.processed_at.is_(None))
        .values(processed_at=now, locked_at=None, locked_by=None)
        .execution_options(synchronize_session=False)
    ).rowcount
    if not marked:
        return None

    event = db.query(OutboxEvent).filter(OutboxEvent.id == event_id).populate_existing().first()

    if result.success:
        _apply_success(db, event, result, now)

    tx = BlockchainTx(
        related_table=event.aggregate,
        related_id=event.aggregate_id,
        network=(event.payload or {}).get("network") or settings.chain_network,
        tx_hash=result.tx_hash,
        status="CONFIRMED" if result.success else "FAILED",
        outbox_event_id=event.id,
        submitted_at=now,
        confirmed_at=now if result.success else None,
        error=None if result.success else result.error,
    )
    db.add(tx)
    db.flush()
    return tx


class OutboxProcessor:
    def __init__(
        self,
        gateway: SettlementGateway,
        *,
        session_factory=SessionLocal,
        worker_id: str | None = None,
        batch_size: int | None = None,
        lock_ttl_seconds: int | None = None,
        poll_interval_seconds: float | None = None,
        settlement_timeout_seconds: float | None = None,
    ):
        self.gateway = gateway
        self.session_factory = session_factory
        self.worker_id = worker_id or settings.outbox_worker_id
        self.batch_size = batch_size or settings.outbox_batch_size
        self.lock_ttl_seconds = lock_ttl_seconds or settings.outbox_lock_ttl_seconds
        self.poll_interval_seconds = poll_interval_seconds or settings.outbox_poll_interval_seconds
        self.settlement_timeout_seconds = settlement_timeout_seconds or settings.settlement_timeout_seconds

    def _claim_batch(self) -> list[SettlementRequest]:
        db = self.session_factory()
        try:
            events = _claim_pending_events(
                db,
                now=utcnow(),
                worker_id=self.worker_id,
                batch_size=self.batch_size,
                lock_ttl_seconds=self.lock_ttl_seconds,
            )
            requests = [
                SettlementRequest(
                    event_id=str(e.id),
                    event_type=e.event_type,
                    aggregate=e.aggregate,
                    aggregate_id=e.aggregate_id,
                    payload=dict(e.payload or {}),
                )
                for e in events
            ]
            db.commit()
            return requests
        finally:
            db.close()

    def _record(self, request: SettlementRequest, result: SettlementResult):
        db = self.session_factory()
        try:
            tx = with_transaction(
                db,
                lambda s: record_settlement_outcome(s, event_id=uuid.UUID(request.event_id), result=result),
            )
            return tx.id if tx is not None else None
        finally:
            db.close()

    async def _settle(self, request: SettlementRequest) -> SettlementResult:
        try:
            return await asyncio.wait_for(self.gateway.settle(request), timeout=self.settlement_timeout_seconds)
        except asyncio.TimeoutError:
            return SettlementResult(
                success=False,
                error=f"Settlement timed out after {self.settlement_timeout_seconds}s",
            )
        except Exception as e:
            logger.exception("settlement gateway raised", extra={"event_id": request.event_id})
            return SettlementResult(success=False, error=str(e) or type(e).__name__)

    async def process_event(self, request: SettlementRequest) -> bool:
        result = await self._settle(request)
        tx_id = await asyncio.to_thread(self._record, request, result)

        log = logger.info if result.success else logger.warning
        log(
            "outbox event processed",
            extra={
                "event_id": request.event_id,
                "event_type": request.event_type,
                "aggregate": request.aggregate,
                "aggregate_id": request.aggregate_id,
                "success": result.success,
                "tx_hash": result.tx_hash,
                "error": result.error,
                "blockchain_tx_id": str(tx_id) if tx_id else None,
            },
        )
        return tx_id is not None

    async def process_batch(self) -> int:
        requests = await asyncio.to_thread(self._claim_batch)
        if requests:
            logger.info("claimed outbox events", extra={"count": len(requests), "worker_id": self.worker_id})

        processed = 0
        for request in requests:
            try:
                if await self.process_event(request):
                    processed += 1
            except Exception:
                # Lock expires after the TTL and the event is picked up again.
                logger.exception(
                    "outbox event processing failed",
                    extra={"event_id": request.event_id, "event_type": request.event_type},
                )
        return processed

    async def run_forever(self, stop_event: asyncio.Event | None = None):
        stop_event = stop_event or asyncio.Event()

        logger.info(
            "outbox processor started",
            extra={
                "worker_id": self.worker_id,
                "batch_size": self.batch_size,
                "poll_interval_seconds": self.poll_interval_seconds,
                "lock_ttl_seconds": self.lock_ttl_seconds,
            },
        )

        while not stop_event.is_set():
            try:
                await self.process_batch()
            except Exception:
                logger.exception("outbox poll failed")

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.poll_interval_seconds)
            except asyncio.TimeoutError:
                pass

        logger.info("outbox processor stopped", extra={"worker_id": self.worker_id})


async def _run():
    gateway = build_settlement_gateway(settings)
    try:
        await OutboxProcessor(gateway).run_forever()
    finally:
        await gateway.aclose()


def main():
    configure_logging()
    asyncio.run(_run())


if __name__ == "__main__":
    main()
