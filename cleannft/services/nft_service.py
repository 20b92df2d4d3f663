import logging

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cleannft.config import settings
from cleannft.db import utcnow, with_transaction
from cleannft.errors import ConflictError, NotFoundError
from cleannft.models.nft_claim import NftClaim
from cleannft.models.nft_definition import NftDefinition
from cleannft.models.nft_mint import NftMint
from cleannft.models.outbox_event import OutboxEvent
from cleannft.models.user import User
from cleannft.schemas.common import build_pagination
from cleannft.schemas.nft import (
    ManualNftClaimCreate,
    NftClaimCreate,
    NftClaimFinalize,
    NftDefinitionCreate,
    NftDefinitionUpdate,
    NftMintBatchCreate,
)
from cleannft.services.admin_service import log_admin_action
from cleannft.services.outbox_processor import (
    NFT_CLAIMS_AGGREGATE,
    NFT_DEFINITIONS_AGGREGATE,
    enqueue_outbox_event,
)
from cleannft.services.settlement import PUSH_TO_IPFS, SEND_TO_CHAIN
from cleannft.services.tx_service import record_blockchain_tx


logger = logging.getLogger(__name__)

MAX_ALLOCATION_ATTEMPTS = 5


# ─── Definitions ────────────────────────────────────────────────────


def _definition_metadata(definition: NftDefinition) -> dict:
    metadata = {
        "name": definition.name,
        "description": definition.description,
        "attributes": definition.attributes or {},
    }
    if definition.image_ipfs_cid:
        metadata["image"] = f"ipfs://{definition.image_ipfs_cid}"
    return metadata


def get_nft_definition(db: Session, code: str):
    definition = db.query(NftDefinition).filter(NftDefinition.code == code).first()
    if not definition:
        raise NotFoundError(f"NFT definition {code} not found")
    return definition


def list_nft_definitions(db: Session):
    return db.query(NftDefinition).order_by(NftDefinition.created_at.desc(), NftDefinition.code.asc()).all()


def create_nft_definition(db: Session, *, admin_user_id, payload: NftDefinitionCreate):
    if db.query(NftDefinition).filter(NftDefinition.code == payload.code).first():
        raise ConflictError(f"NFT definition {payload.code} already exists")

    now = utcnow()
    definition = NftDefinition(
        code=payload.code,
        name=payload.name,
        description=payload.description,
        image_ipfs_cid=payload.image_ipfs_cid,
        attributes=payload.attributes,
        supply_cap=payload.supply_cap,
        created_by=admin_user_id,
        created_at=now,
        updated_at=now,
    )
    db.add(definition)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise ConflictError(f"NFT definition {payload.code} already exists")

    enqueue_outbox_event(
        db,
        event_type=PUSH_TO_IPFS,
        aggregate=NFT_DEFINITIONS_AGGREGATE,
        aggregate_id=definition.code,
        payload={"name": definition.code, "metadata": _definition_metadata(definition)},
    )
    log_admin_action(
        db,
        admin_user_id=admin_user_id,
        action="NFT_DEFINITION_CREATED",
        target_table="nft_definitions",
        target_id=definition.code,
    )
    db.commit()
    db.refresh(definition)
    return definition


def update_nft_definition(db: Session, code: str, *, admin_user_id, payload: NftDefinitionUpdate):
    definition = get_nft_definition(db, code)

    data = payload.model_dump(exclude_unset=True)
    for k, v in data.items():
        if v is None and k != "image_ipfs_cid":
            continue
        setattr(definition, k, v)
    definition.updated_at = utcnow()

    log_admin_action(
        db,
        admin_user_id=admin_user_id,
        action="NFT_DEFINITION_UPDATED",
        target_table="nft_definitions",
        target_id=definition.code,
        details={"fields": sorted(data.keys())},
    )
    db.commit()
    db.refresh(definition)
    return definition


# ─── Mints ──────────────────────────────────────────────────────────


def create_nft_mint_batch(db: Session, *, admin_user_id, payload: NftMintBatchCreate):
    definition = get_nft_definition(db, payload.nft_def_code)

    if definition.supply_cap is not None:
        existing = db.query(func.count(NftMint.id)).filter(NftMint.nft_def_code == definition.code).scalar() or 0
        if existing + payload.count > definition.supply_cap:
            raise ConflictError(
                "Mint batch exceeds supply cap",
                details={"supplyCap": definition.supply_cap, "existing": int(existing), "requested": payload.count},
            )

    now = utcnow()
    network = payload.network or settings.chain_network
    mints = [
        NftMint(
            nft_def_code=definition.code,
            token_id=payload.start_token_id + i,
            contract=payload.contract,
            network=network,
            owner_address=payload.owner_address,
            status="MINTED",
            minted_at=now,
        )
        for i in range(payload.count)
    ]
    db.add_all(mints)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise ConflictError("Token ids already minted for this definition")

    log_admin_action(
        db,
        admin_user_id=admin_user_id,
        action="NFT_MINT_BATCH_CREATED",
        target_table="nft_mints",
        target_id=definition.code,
        details={"count": payload.count, "startTokenId": payload.start_token_id, "contract": payload.contract},
    )
    db.commit()
    for mint in mints:
        db.refresh(mint)

    logger.info(
        "nft mint batch created",
        extra={"nft_def_code": definition.code, "count": payload.count, "start_token_id": payload.start_token_id},
    )
    return mints


def list_nft_mints(
    db: Session,
    *,
    page: int = 1,
    limit: int = 20,
    nft_def_code: str | None = None,
    status: str | None = None,
):
    q = db.query(NftMint)
    if nft_def_code:
        q = q.filter(NftMint.nft_def_code == nft_def_code)
    if status:
        q = q.filter(NftMint.status == status)
    total = q.count()
    items = q.order_by(NftMint.nft_def_code.asc(), NftMint.token_id.asc()).offset((page - 1) * limit).limit(limit).all()
    return {"mints": items, "pagination": build_pagination(page=page, limit=limit, total=total)}


# ─── Claims ─────────────────────────────────────────────────────────


def _allocate_mint(db: Session, *, user_id, definition_code: str, exclude_ids=()):
    """
    Bind one pooled mint to the user.

    Candidates are read with SKIP LOCKED; the conditional update on
    allocated_to_user_id is what guarantees a mint is handed out once.
    """
    tried = list(exclude_ids)
    for _ in range(MAX_ALLOCATION_ATTEMPTS):
        q = (
            db.query(NftMint)
            .filter(NftMint.nft_def_code == definition_code)
            .filter(NftMint.status == "MINTED")
            .filter(NftMint.allocated_to_user_id.is_(None))
        )
        if tried:
            q = q.filter(NftMint.id.notin_(tried))
        candidate = q.order_by(NftMint.token_id.asc()).with_for_update(skip_locked=True).first()
        if candidate is None:
            return None

        allocated = db.execute(
            update(NftMint)
            .where(NftMint.id == candidate.id)
            .where(NftMint.status == "MINTED")
            .where(NftMint.allocated_to_user_id.is_(None))
            .values(allocated_to_user_id=user_id, allocated_at=utcnow())
            .execution_options(synchronize_session=False)
        ).rowcount
        if allocated == 1:
            db.refresh(candidate)
            return candidate
        tried.append(candidate.id)

    return None


def _claim(db: Session, *, user_id, payload: NftClaimCreate):
    definition = get_nft_definition(db, payload.definition_code)

    # Held until commit so one user's concurrent claims see each other.
    user = db.query(User).filter(User.id == user_id).with_for_update().first()
    if not user:
        raise NotFoundError("User not found")

    already = (
        db.query(NftClaim.id)
        .join(NftMint, NftMint.id == NftClaim.nft_mint_id)
        .filter(NftClaim.user_id == user_id)
        .filter(NftMint.nft_def_code == definition.code)
        .filter(NftClaim.status != "FAILED")
        .first()
    )
    if already:
        raise ConflictError("NFT already claimed for this definition")

    # A user may not be bound twice to the same mint, even after a failed claim.
    previous_mints = [r[0] for r in db.query(NftClaim.nft_mint_id).filter(NftClaim.user_id == user_id).all()]
    mint = _allocate_mint(db, user_id=user_id, definition_code=definition.code, exclude_ids=previous_mints)
    if mint is None:
        raise ConflictError("No available NFTs for this definition")

    now = utcnow()
    claim = NftClaim(
        user_id=user_id,
        nft_mint_id=mint.id,
        claim_type=payload.claim_type,
        status="PENDING",
        claimed_at=now,
        updated_at=now,
    )
    db.add(claim)
    db.flush()

    enqueue_outbox_event(
        db,
        event_type=SEND_TO_CHAIN,
        aggregate=NFT_CLAIMS_AGGREGATE,
        aggregate_id=claim.id,
        payload={
            "nftClaimId": str(claim.id),
            "nftMintId": str(mint.id),
            "userId": str(user_id),
            "fromWallet": mint.owner_address,
            "toWallet": user.wallet_address,
            "tokenId": mint.token_id,
            "contract": mint.contract,
            "network": mint.network,
        },
    )
    return claim, mint


def claim_nft(db: Session, *, user_id, payload: NftClaimCreate):
    claim, mint = with_transaction(db, lambda s: _claim(s, user_id=user_id, payload=payload))
    db.refresh(claim)
    db.refresh(mint)

    logger.info(
        "nft claim initiated",
        extra={
            "claim_id": str(claim.id),
            "user_id": str(user_id),
            "nft_def_code": mint.nft_def_code,
            "token_id": mint.token_id,
        },
    )
    return claim, mint


def finalize_nft_claim(db: Session, claim_id, *, admin_user_id, payload: NftClaimFinalize):
    claim = db.query(NftClaim).filter(NftClaim.id == claim_id).with_for_update().first()
    if not claim:
        raise NotFoundError("NFT claim not found")
    if claim.status != "PENDING":
        raise ConflictError(f"NFT claim is already {claim.status}")

    mint = db.query(NftMint).filter(NftMint.id == claim.nft_mint_id).first()
    now = utcnow()

    if payload.status == "COMPLETED":
        claim.status = "COMPLETED"
        if mint is not None:
            mint.status = "TRANSFERRED"
            user = db.query(User).filter(User.id == claim.user_id).first()
            if user is not None and user.wallet_address:
                mint.owner_address = user.wallet_address
        record_blockchain_tx(
            db,
            related_table=NFT_CLAIMS_AGGREGATE,
            related_id=claim.id,
            network=mint.network if mint else settings.chain_network,
            status="CONFIRMED",
            tx_hash=payload.tx_hash,
        )
    else:
        claim.status = "FAILED"
        if mint is not None and mint.status == "MINTED":
            mint.allocated_to_user_id = None
            mint.allocated_at = None
        record_blockchain_tx(
            db,
            related_table=NFT_CLAIMS_AGGREGATE,
            related_id=claim.id,
            network=mint.network if mint else settings.chain_network,
            status="FAILED",
            tx_hash=payload.tx_hash,
            error=payload.error or "Claim finalized as failed",
        )
    claim.updated_at = now

    db.execute(
        update(OutboxEvent)
        .where(OutboxEvent.aggregate == NFT_CLAIMS_AGGREGATE)
        .where(OutboxEvent.aggregate_id == str(claim.id))
        .where(OutboxEvent.processed_at.is_(None))
        .values(processed_at=now, locked_at=None, locked_by=None)
        .execution_options(synchronize_session=False)
    )

    log_admin_action(
        db,
        admin_user_id=admin_user_id,
        action="NFT_CLAIM_FINALIZED",
        target_table="nft_claims",
        target_id=str(claim.id),
        details={"status": payload.status, "txHash": payload.tx_hash, "error": payload.error},
    )
    db.commit()
    db.refresh(claim)

    logger.info(
        "nft claim finalized",
        extra={"claim_id": str(claim.id), "status": claim.status, "admin_user_id": str(admin_user_id)},
    )
    return claim


def _manual_claim(db: Session, *, admin_user_id, payload: ManualNftClaimCreate):
    user = db.query(User).filter(User.id == payload.user_id).first()
    if not user:
        raise NotFoundError("User not found")

    mint = db.query(NftMint).filter(NftMint.id == payload.nft_mint_id).first()
    if not mint:
        raise NotFoundError("NFT mint not found")
    if mint.status != "MINTED" or mint.allocated_to_user_id is not None:
        raise ConflictError("NFT mint is not available")

    existing = (
        db.query(NftClaim.id)
        .filter(NftClaim.user_id == user.id)
        .filter(NftClaim.nft_mint_id == mint.id)
        .first()
    )
    if existing:
        raise ConflictError("User already has a claim for this NFT mint")

    now = utcnow()
    allocated = db.execute(
        update(NftMint)
        .where(NftMint.id == mint.id)
        .where(NftMint.status == "MINTED")
        .where(NftMint.allocated_to_user_id.is_(None))
        .values(
            allocated_to_user_id=user.id,
            allocated_at=now,
            status="TRANSFERRED",
            owner_address=user.wallet_address or mint.owner_address,
        )
        .execution_options(synchronize_session=False)
    ).rowcount
    if allocated != 1:
        raise ConflictError("NFT mint is not available")

    claim = NftClaim(
        user_id=user.id,
        nft_mint_id=mint.id,
        claim_type=payload.claim_type,
        status="COMPLETED",
        claimed_at=now,
        updated_at=now,
    )
    db.add(claim)
    db.flush()

    log_admin_action(
        db,
        admin_user_id=admin_user_id,
        action="NFT_MANUAL_CLAIM",
        target_table="nft_claims",
        target_id=str(claim.id),
        details={"userId": str(user.id), "nftMintId": str(mint.id), "reason": payload.reason},
    )
    return claim


def manual_nft_claim(db: Session, *, admin_user_id, payload: ManualNftClaimCreate):
    claim = with_transaction(db, lambda s: _manual_claim(s, admin_user_id=admin_user_id, payload=payload))
    db.refresh(claim)
    return claim


def get_user_claims(db: Session, user_id):
    rows = (
        db.query(NftClaim, NftMint, NftDefinition)
        .join(NftMint, NftMint.id == NftClaim.nft_mint_id)
        .join(NftDefinition, NftDefinition.code == NftMint.nft_def_code)
        .filter(NftClaim.user_id == user_id)
        .order_by(NftClaim.claimed_at.desc())
        .all()
    )
    return [
        {
            "id": claim.id,
            "user_id": claim.user_id,
            "nft_mint_id": claim.nft_mint_id,
            "claim_type": claim.claim_type,
            "status": claim.status,
            "claimed_at": claim.claimed_at,
            "updated_at": claim.updated_at,
            "mint": mint,
            "definition": definition,
        }
        for claim, mint, definition in rows
    ]


def get_nft_stats(db: Session):
    mints_by_status = dict(db.query(NftMint.status, func.count(NftMint.id)).group_by(NftMint.status).all())
    claims_by_status = dict(db.query(NftClaim.status, func.count(NftClaim.id)).group_by(NftClaim.status).all())
    return {
        "total_definitions": int(db.query(func.count(NftDefinition.code)).scalar() or 0),
        "total_mints": int(sum(mints_by_status.values())),
        "mints_by_status": {k: int(v) for k, v in mints_by_status.items()},
        "total_claims": int(sum(claims_by_status.values())),
        "claims_by_status": {k: int(v) for k, v in claims_by_status.items()},
    }
