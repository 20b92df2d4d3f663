from datetime import timedelta

import pytest

from cleannft.db import SessionLocal, utcnow
from cleannft.models.blockchain_tx import BlockchainTx
from cleannft.models.nft_claim import NftClaim
from cleannft.models.nft_definition import NftDefinition
from cleannft.models.nft_mint import NftMint
from cleannft.models.outbox_event import OutboxEvent
from cleannft.schemas.nft import NftClaimCreate
from cleannft.services.nft_service import claim_nft
from cleannft.services.outbox_processor import OutboxProcessor, enqueue_outbox_event
from cleannft.services.settlement import DeterministicSettlementGateway, PUSH_TO_IPFS, SEND_TO_CHAIN
from cleannft.services.tx_service import retry_blockchain_tx


def _processor(gateway, **kwargs):
    kwargs.setdefault("batch_size", 10)
    kwargs.setdefault("poll_interval_seconds", 0.01)
    kwargs.setdefault("settlement_timeout_seconds", 5)
    return OutboxProcessor(gateway, worker_id="test-worker", **kwargs)


def _claim(user_id):
    db = SessionLocal()
    try:
        claim, _ = claim_nft(db, user_id=user_id, payload=NftClaimCreate(definition_code="TREE"))
        return claim.id
    finally:
        db.close()


@pytest.mark.asyncio
async def test_successful_chain_settlement_completes_claim(user, nft_pool, session_scope):
    user_id, _ = user
    nft_pool(count=1)
    claim_id = _claim(user_id)

    processed = await _processor(DeterministicSettlementGateway()).process_batch()
    assert processed == 1

    with session_scope() as db:
        event = db.query(OutboxEvent).one()
        assert event.processed_at is not None
        assert event.locked_by is None

        claim = db.query(NftClaim).filter(NftClaim.id == claim_id).one()
        assert claim.status == "COMPLETED"
        mint = db.query(NftMint).one()
        assert mint.status == "TRANSFERRED"
        assert mint.owner_address.startswith("0x")

        tx = db.query(BlockchainTx).one()
        assert tx.status == "CONFIRMED"
        assert tx.tx_hash.startswith("0x")
        assert tx.outbox_event_id == event.id
        assert tx.related_table == "nft_claims"
        assert tx.network == "polygon-amoy"


@pytest.mark.asyncio
async def test_failed_settlement_is_terminal(user, nft_pool, session_scope):
    user_id, _ = user
    nft_pool(count=1)
    claim_id = _claim(user_id)

    gateway = DeterministicSettlementGateway(fail_event_types={SEND_TO_CHAIN}, error="Insufficient gas")
    processor = _processor(gateway)
    assert await processor.process_batch() == 1
    assert await processor.process_batch() == 0

    with session_scope() as db:
        assert db.query(OutboxEvent).one().processed_at is not None
        tx = db.query(BlockchainTx).one()
        assert tx.status == "FAILED"
        assert tx.error == "Insufficient gas"
        assert db.query(NftClaim).filter(NftClaim.id == claim_id).one().status == "PENDING"

    assert len(gateway.calls) == 1


@pytest.mark.asyncio
async def test_retry_appends_a_new_attempt(user, nft_pool, session_scope):
    user_id, _ = user
    nft_pool(count=1)
    claim_id = _claim(user_id)

    await _processor(DeterministicSettlementGateway(fail_event_types={SEND_TO_CHAIN})).process_batch()

    with session_scope() as db:
        failed_tx = db.query(BlockchainTx).one()
        retry_event = retry_blockchain_tx(db, failed_tx.id)
        assert retry_event.payload["retryTxId"] == str(failed_tx.id)
        assert retry_event.payload["nftClaimId"] == str(claim_id)
        assert retry_event.aggregate_id == str(claim_id)

    assert await _processor(DeterministicSettlementGateway()).process_batch() == 1

    with session_scope() as db:
        statuses = sorted(tx.status for tx in db.query(BlockchainTx).all())
        assert statuses == ["CONFIRMED", "FAILED"]
        assert db.query(OutboxEvent).count() == 2
        assert db.query(OutboxEvent).filter(OutboxEvent.processed_at.is_(None)).count() == 0
        assert db.query(NftClaim).filter(NftClaim.id == claim_id).one().status == "COMPLETED"


def test_only_failed_transactions_can_be_retried(client, admin, session_scope):
    _, admin_token = admin
    with session_scope() as db:
        tx = BlockchainTx(
            related_table="nft_claims",
            related_id="x",
            network="polygon-amoy",
            status="CONFIRMED",
            tx_hash="0x1",
            submitted_at=utcnow(),
        )
        db.add(tx)
        db.flush()
        tx_id = tx.id

    resp = client.post(f"/api/v1/admin/blockchain/txs/{tx_id}/retry", headers={"Authorization": f"Bearer {admin_token}"})
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_batch_is_bounded_and_ordered(session_scope):
    with session_scope() as db:
        for i in range(12):
            enqueue_outbox_event(
                db,
                event_type=PUSH_TO_IPFS,
                aggregate="nft_definitions",
                aggregate_id=f"DEF_{i:02d}",
                payload={"name": f"DEF_{i:02d}"},
            )

    gateway = DeterministicSettlementGateway()
    processor = _processor(gateway)
    assert await processor.process_batch() == 10
    assert await processor.process_batch() == 2
    assert await processor.process_batch() == 0

    with session_scope() as db:
        assert db.query(BlockchainTx).count() == 12
        assert all(tx.tx_hash.startswith("Qm") for tx in db.query(BlockchainTx).all())


@pytest.mark.asyncio
async def test_ipfs_push_stores_metadata_cid(admin, session_scope):
    admin_id, _ = admin
    with session_scope() as db:
        db.add(NftDefinition(code="LEAF", name="Leaf", description="d", attributes={}, created_at=utcnow(), updated_at=utcnow()))
        db.flush()
        enqueue_outbox_event(
            db,
            event_type=PUSH_TO_IPFS,
            aggregate="nft_definitions",
            aggregate_id="LEAF",
            payload={"metadata": {"name": "Leaf"}},
        )

    await _processor(DeterministicSettlementGateway()).process_batch()

    with session_scope() as db:
        definition = db.query(NftDefinition).filter(NftDefinition.code == "LEAF").one()
        tx = db.query(BlockchainTx).one()
        assert definition.metadata_ipfs_cid == tx.tx_hash


@pytest.mark.asyncio
async def test_slow_settlement_times_out_as_failure(session_scope):
    with session_scope() as db:
        enqueue_outbox_event(db, event_type=SEND_TO_CHAIN, aggregate="nft_claims", aggregate_id="c-1", payload={})

    processor = _processor(DeterministicSettlementGateway(delay_seconds=1.0), settlement_timeout_seconds=0.05)
    assert await processor.process_batch() == 1

    with session_scope() as db:
        tx = db.query(BlockchainTx).one()
        assert tx.status == "FAILED"
        assert "timed out" in tx.error


@pytest.mark.asyncio
async def test_gateway_crash_does_not_abort_batch(session_scope):
    with session_scope() as db:
        for i in range(3):
            enqueue_outbox_event(db, event_type=SEND_TO_CHAIN, aggregate="nft_claims", aggregate_id=f"c-{i}", payload={})

    class FlakyGateway(DeterministicSettlementGateway):
        async def send_to_chain(self, request):
            if request.aggregate_id == "c-1":
                raise RuntimeError("socket closed")
            return await super().send_to_chain(request)

    assert await _processor(FlakyGateway()).process_batch() == 3

    with session_scope() as db:
        txs = {tx.related_id: tx for tx in db.query(BlockchainTx).all()}
        assert txs["c-1"].status == "FAILED"
        assert txs["c-1"].error == "socket closed"
        assert txs["c-0"].status == txs["c-2"].status == "CONFIRMED"


@pytest.mark.asyncio
async def test_event_closed_by_finalize_is_not_settled_again(client, user, admin, nft_pool, session_scope):
    user_id, token = user
    _, admin_token = admin
    nft_pool(count=1)
    claim_id = _claim(user_id)

    resp = client.put(
        f"/api/v1/nft/claims/{claim_id}/finalize",
        json={"status": "COMPLETED", "txHash": "0xmanual"},
        headers={"Authorization": f"Bearer {admin_token}"},
    )
    assert resp.status_code == 200

    gateway = DeterministicSettlementGateway()
    assert await _processor(gateway).process_batch() == 0
    assert gateway.calls == []

    with session_scope() as db:
        assert db.query(BlockchainTx).count() == 1


@pytest.mark.asyncio
async def test_expired_lock_is_reclaimed(session_scope):
    with session_scope() as db:
        event = enqueue_outbox_event(db, event_type=SEND_TO_CHAIN, aggregate="nft_claims", aggregate_id="c", payload={})
        event.locked_at = utcnow() - timedelta(hours=1)
        event.locked_by = "dead-worker"

    assert await _processor(DeterministicSettlementGateway(), lock_ttl_seconds=60).process_batch() == 1


@pytest.mark.asyncio
async def test_live_lock_is_skipped(session_scope):
    with session_scope() as db:
        event = enqueue_outbox_event(db, event_type=SEND_TO_CHAIN, aggregate="nft_claims", aggregate_id="c", payload={})
        event.locked_at = utcnow()
        event.locked_by = "other-worker"

    assert await _processor(DeterministicSettlementGateway(), lock_ttl_seconds=600).process_batch() == 0
