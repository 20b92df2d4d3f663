from concurrent.futures import ThreadPoolExecutor

from cleannft.db import SessionLocal
from cleannft.errors import ConflictError
from cleannft.models.blockchain_tx import BlockchainTx
from cleannft.models.nft_claim import NftClaim
from cleannft.models.nft_mint import NftMint
from cleannft.models.outbox_event import OutboxEvent
from cleannft.schemas.nft import NftClaimCreate
from cleannft.services.nft_service import claim_nft


def _headers(token):
    return {"Authorization": f"Bearer {token}"}


def test_claim_creates_pending_claim_and_outbox_event(client, user, nft_pool, session_scope):
    user_id, token = user
    nft_pool(count=2)

    resp = client.post("/api/v1/nft/claim", json={"definitionCode": "TREE", "claimType": "POINTS_REDEMPTION"}, headers=_headers(token))
    assert resp.status_code == 201
    body = resp.json()
    assert body["claim"]["status"] == "PENDING"
    assert body["mint"]["tokenId"] == 1
    assert body["mint"]["allocatedToUserId"] == str(user_id)

    with session_scope() as db:
        event = db.query(OutboxEvent).one()
        assert event.event_type == "SEND_TO_CHAIN"
        assert event.aggregate == "nft_claims"
        assert event.aggregate_id == body["claim"]["id"]
        assert event.payload["tokenId"] == 1
        assert event.payload["fromWallet"] == "0xtreasury"
        assert event.payload["network"] == "polygon-amoy"
        assert event.processed_at is None


def test_claim_unknown_definition(client, user):
    _, token = user
    resp = client.post("/api/v1/nft/claim", json={"definitionCode": "NOPE"}, headers=_headers(token))
    assert resp.status_code == 404


def test_exhausted_pool_is_conflict(client, make_user, nft_pool):
    nft_pool(count=1)
    _, first = make_user()
    _, second = make_user()

    assert client.post("/api/v1/nft/claim", json={"definitionCode": "TREE"}, headers=_headers(first)).status_code == 201
    resp = client.post("/api/v1/nft/claim", json={"definitionCode": "TREE"}, headers=_headers(second))
    assert resp.status_code == 409
    assert resp.json()["code"] == "CONFLICT"


def test_same_user_cannot_claim_definition_twice(client, user, nft_pool):
    _, token = user
    nft_pool(count=3)
    assert client.post("/api/v1/nft/claim", json={"definitionCode": "TREE"}, headers=_headers(token)).status_code == 201
    assert client.post("/api/v1/nft/claim", json={"definitionCode": "TREE"}, headers=_headers(token)).status_code == 409


def test_concurrent_claims_never_share_a_mint(make_user, nft_pool, session_scope):
    (mint_id,) = nft_pool(count=1)
    user_ids = [make_user()[0] for _ in range(5)]

    def attempt(user_id):
        db = SessionLocal()
        try:
            claim_nft(db, user_id=user_id, payload=NftClaimCreate(definition_code="TREE"))
            return "ok"
        except ConflictError:
            return "conflict"
        finally:
            db.close()

    with ThreadPoolExecutor(max_workers=5) as pool:
        results = list(pool.map(attempt, user_ids))

    assert results.count("ok") == 1
    assert results.count("conflict") == 4

    with session_scope() as db:
        claims = db.query(NftClaim).filter(NftClaim.nft_mint_id == mint_id).all()
        assert len(claims) == 1
        mint = db.query(NftMint).filter(NftMint.id == mint_id).one()
        assert mint.allocated_to_user_id == claims[0].user_id


def test_concurrent_claims_fill_the_pool_exactly(make_user, nft_pool, session_scope):
    nft_pool(count=3)
    user_ids = [make_user()[0] for _ in range(6)]

    def attempt(user_id):
        db = SessionLocal()
        try:
            claim, mint = claim_nft(db, user_id=user_id, payload=NftClaimCreate(definition_code="TREE"))
            return mint.id
        except ConflictError:
            return None
        finally:
            db.close()

    with ThreadPoolExecutor(max_workers=6) as pool:
        results = list(pool.map(attempt, user_ids))

    won = [r for r in results if r is not None]
    assert len(won) == 3
    assert len(set(won)) == 3


def test_finalize_completed(client, user, admin, nft_pool, session_scope):
    user_id, token = user
    _, admin_token = admin
    nft_pool(count=1)
    claim_id = client.post("/api/v1/nft/claim", json={"definitionCode": "TREE"}, headers=_headers(token)).json()["claim"]["id"]

    resp = client.put(
        f"/api/v1/nft/claims/{claim_id}/finalize",
        json={"status": "COMPLETED", "txHash": "0xfeed"},
        headers=_headers(admin_token),
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "COMPLETED"

    with session_scope() as db:
        mint = db.query(NftMint).one()
        assert mint.status == "TRANSFERRED"
        tx = db.query(BlockchainTx).one()
        assert tx.status == "CONFIRMED"
        assert tx.tx_hash == "0xfeed"
        assert db.query(OutboxEvent).filter(OutboxEvent.processed_at.is_(None)).count() == 0

    again = client.put(
        f"/api/v1/nft/claims/{claim_id}/finalize",
        json={"status": "FAILED"},
        headers=_headers(admin_token),
    )
    assert again.status_code == 409


def test_finalize_failed_returns_mint_to_pool(client, make_user, admin, nft_pool, session_scope):
    _, first = make_user()
    _, second = make_user()
    _, admin_token = admin
    nft_pool(count=1)
    claim_id = client.post("/api/v1/nft/claim", json={"definitionCode": "TREE"}, headers=_headers(first)).json()["claim"]["id"]

    resp = client.put(
        f"/api/v1/nft/claims/{claim_id}/finalize",
        json={"status": "FAILED", "error": "Transaction reverted"},
        headers=_headers(admin_token),
    )
    assert resp.json()["status"] == "FAILED"

    with session_scope() as db:
        tx = db.query(BlockchainTx).one()
        assert tx.status == "FAILED"
        assert tx.error == "Transaction reverted"

    assert client.post("/api/v1/nft/claim", json={"definitionCode": "TREE"}, headers=_headers(second)).status_code == 201


def test_finalize_unknown_claim(client, admin):
    _, admin_token = admin
    resp = client.put(
        "/api/v1/nft/claims/00000000-0000-0000-0000-000000000001/finalize",
        json={"status": "COMPLETED"},
        headers=_headers(admin_token),
    )
    assert resp.status_code == 404


def test_manual_claim_binds_specific_mint(client, user, admin, nft_pool, session_scope):
    user_id, token = user
    _, admin_token = admin
    _, second_mint = nft_pool(count=2)

    resp = client.post(
        "/api/v1/nft/claims/manual",
        json={"userId": str(user_id), "nftMintId": str(second_mint), "reason": "event prize"},
        headers=_headers(admin_token),
    )
    assert resp.status_code == 201
    assert resp.json()["status"] == "COMPLETED"

    with session_scope() as db:
        mint = db.query(NftMint).filter(NftMint.id == second_mint).one()
        assert mint.status == "TRANSFERRED"
        assert mint.allocated_to_user_id == user_id

    again = client.post(
        "/api/v1/nft/claims/manual",
        json={"userId": str(user_id), "nftMintId": str(second_mint)},
        headers=_headers(admin_token),
    )
    assert again.status_code == 409

    mine = client.get("/api/v1/nft/my", headers=_headers(token)).json()
    assert len(mine) == 1
    assert mine[0]["definition"]["code"] == "TREE"
    assert mine[0]["mint"]["tokenId"] == 2


def test_definition_create_enqueues_ipfs_push(client, admin, session_scope):
    _, admin_token = admin
    resp = client.post(
        "/api/v1/nft/definitions",
        json={"code": "OCEAN_1", "name": "Ocean", "description": "Cleanup hero", "attributes": {"rarity": "rare"}, "supplyCap": 2},
        headers=_headers(admin_token),
    )
    assert resp.status_code == 201

    with session_scope() as db:
        event = db.query(OutboxEvent).one()
        assert event.event_type == "PUSH_TO_IPFS"
        assert event.aggregate == "nft_definitions"
        assert event.payload["metadata"]["attributes"] == {"rarity": "rare"}

    mint = client.post(
        "/api/v1/nft/mint-batch",
        json={"nftDefCode": "OCEAN_1", "count": 2, "startTokenId": 100, "contract": "0xabc"},
        headers=_headers(admin_token),
    )
    assert mint.status_code == 201
    assert [m["tokenId"] for m in mint.json()] == [100, 101]

    over_cap = client.post(
        "/api/v1/nft/mint-batch",
        json={"nftDefCode": "OCEAN_1", "count": 1, "startTokenId": 200, "contract": "0xabc"},
        headers=_headers(admin_token),
    )
    assert over_cap.status_code == 409

    public = client.get("/api/v1/nft/definitions/OCEAN_1")
    assert public.status_code == 200
    assert public.json()["supplyCap"] == 2


def test_nft_stats_and_analytics(client, make_user, admin, nft_pool):
    _, admin_token = admin
    nft_pool(count=3)
    _, token = make_user()
    client.post("/api/v1/nft/claim", json={"definitionCode": "TREE"}, headers=_headers(token))

    stats = client.get("/api/v1/nft/stats", headers=_headers(admin_token)).json()
    assert stats["totalDefinitions"] == 1
    assert stats["totalMints"] == 3
    assert stats["claimsByStatus"] == {"PENDING": 1}

    analytics = client.get("/api/v1/admin/analytics", headers=_headers(admin_token)).json()
    assert analytics["users"]["total"] == 2
    assert analytics["nft"]["claimsByStatus"] == {"PENDING": 1}
    assert analytics["waste"]["totalEvents"] == 0


def test_one_user_racing_claims_gets_one_mint(user, nft_pool, session_scope):
    user_id, _ = user
    nft_pool(count=4)

    def attempt(_):
        db = SessionLocal()
        try:
            claim_nft(db, user_id=user_id, payload=NftClaimCreate(definition_code="TREE"))
            return "ok"
        except ConflictError:
            return "conflict"
        finally:
            db.close()

    with ThreadPoolExecutor(max_workers=4) as pool:
        results = list(pool.map(attempt, range(4)))

    assert results.count("ok") == 1

    with session_scope() as db:
        assert db.query(NftClaim).filter(NftClaim.user_id == user_id).count() == 1
        assert db.query(NftMint).filter(NftMint.allocated_to_user_id == user_id).count() == 1
