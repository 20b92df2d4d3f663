from typing import Literal

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from cleannft.db import get_db
from cleannft.deps.auth import CurrentUser, get_current_user, require_admin
from cleannft.schemas.common import ApiModel, Pagination
from cleannft.schemas.nft import (
    ManualNftClaimCreate,
    NftClaimCreate,
    NftClaimCreated,
    NftClaimFinalize,
    NftClaimOut,
    NftDefinitionCreate,
    NftDefinitionOut,
    NftDefinitionUpdate,
    NftMintBatchCreate,
    NftMintOut,
    NftStats,
    UserNftClaimOut,
)
from cleannft.services.nft_service import (
    claim_nft,
    create_nft_definition,
    create_nft_mint_batch,
    finalize_nft_claim,
    get_nft_definition,
    get_nft_stats,
    get_user_claims,
    list_nft_definitions,
    list_nft_mints,
    manual_nft_claim,
    update_nft_definition,
)

router = APIRouter(prefix="/nft", tags=["nft"])


class NftMintList(ApiModel):
    mints: list[NftMintOut]
    pagination: Pagination


@router.get("/definitions", response_model=list[NftDefinitionOut])
def read_definitions(db: Session = Depends(get_db)):
    return list_nft_definitions(db)


@router.get("/definitions/{code}", response_model=NftDefinitionOut)
def read_definition(code: str, db: Session = Depends(get_db)):
    return get_nft_definition(db, code)


@router.post("/definitions", response_model=NftDefinitionOut, status_code=201)
def add_definition(
    payload: NftDefinitionCreate,
    admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return create_nft_definition(db, admin_user_id=admin.id, payload=payload)


@router.put("/definitions/{code}", response_model=NftDefinitionOut)
def edit_definition(
    code: str,
    payload: NftDefinitionUpdate,
    admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return update_nft_definition(db, code, admin_user_id=admin.id, payload=payload)


@router.post("/mint-batch", response_model=list[NftMintOut], status_code=201)
def mint_batch(
    payload: NftMintBatchCreate,
    admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return create_nft_mint_batch(db, admin_user_id=admin.id, payload=payload)


@router.get("/mints", response_model=NftMintList)
def read_mints(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    nft_def_code: str | None = Query(default=None, alias="nftDefCode"),
    status: Literal["MINTED", "TRANSFERRED", "BURNED"] | None = None,
    admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return list_nft_mints(db, page=page, limit=limit, nft_def_code=nft_def_code, status=status)


@router.post("/claim", response_model=NftClaimCreated, status_code=201)
def claim(
    payload: NftClaimCreate,
    user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    nft_claim, mint = claim_nft(db, user_id=user.id, payload=payload)
    return {"claim": nft_claim, "mint": mint}


@router.get("/my", response_model=list[UserNftClaimOut])
def read_my_claims(user: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
    return get_user_claims(db, user.id)


@router.put("/claims/{claim_id}/finalize", response_model=NftClaimOut)
def finalize_claim(
    claim_id: UUID,
    payload: NftClaimFinalize,
    admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return finalize_nft_claim(db, claim_id, admin_user_id=admin.id, payload=payload)


@router.post("/claims/manual", response_model=NftClaimOut, status_code=201)
def manual_claim(
    payload: ManualNftClaimCreate,
    admin: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return manual_nft_claim(db, admin_user_id=admin.id, payload=payload)


@router.get("/stats", response_model=NftStats)
def read_nft_stats(admin: CurrentUser = Depends(require_admin), db: Session = Depends(get_db)):
    return get_nft_stats(db)
