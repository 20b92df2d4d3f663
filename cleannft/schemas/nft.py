from datetime import datetime
from typing import Any, Dict, Literal, Optional

from uuid import UUID

from pydantic import Field

from cleannft.schemas.common import ApiModel


class NftDefinitionCreate(ApiModel):
    code: str = Field(min_length=1, max_length=50, pattern=r"^[A-Z0-9_]+$")
    name: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1)
    image_ipfs_cid: Optional[str] = Field(default=None, max_length=100)
    attributes: Dict[str, Any] = Field(default_factory=dict)
    supply_cap: Optional[int] = Field(default=None, gt=0)


class NftDefinitionUpdate(ApiModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, min_length=1)
    image_ipfs_cid: Optional[str] = Field(default=None, max_length=100)
    attributes: Optional[Dict[str, Any]] = None
    supply_cap: Optional[int] = Field(default=None, gt=0)


class NftDefinitionOut(ApiModel):
    code: str
    name: str
    description: str
    image_ipfs_cid: Optional[str] = None
    metadata_ipfs_cid: Optional[str] = None
    attributes: Optional[Dict[str, Any]] = None
    supply_cap: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class NftMintBatchCreate(ApiModel):
    nft_def_code: str = Field(min_length=1, max_length=50)
    count: int = Field(gt=0, le=1000)
    start_token_id: int = Field(ge=0)
    contract: str = Field(min_length=1, max_length=100)
    network: Optional[str] = Field(default=None, max_length=50)
    owner_address: Optional[str] = Field(default=None, max_length=100)


class NftMintOut(ApiModel):
    id: UUID
    nft_def_code: str
    token_id: int
    contract: str
    network: str
    owner_address: Optional[str] = None
    status: str
    allocated_to_user_id: Optional[UUID] = None
    allocated_at: Optional[datetime] = None
    minted_at: Optional[datetime] = None


class NftClaimCreate(ApiModel):
    definition_code: str = Field(min_length=1, max_length=50)
    claim_type: str = Field(default="POINTS_REDEMPTION", min_length=1, max_length=50)


class NftClaimOut(ApiModel):
    id: UUID
    user_id: UUID
    nft_mint_id: UUID
    claim_type: str
    status: str
    claimed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class NftClaimCreated(ApiModel):
    claim: NftClaimOut
    mint: NftMintOut


class NftClaimFinalize(ApiModel):
    status: Literal["COMPLETED", "FAILED"]
    tx_hash: Optional[str] = Field(default=None, max_length=100)
    error: Optional[str] = Field(default=None, max_length=2000)


class ManualNftClaimCreate(ApiModel):
    user_id: UUID
    nft_mint_id: UUID
    claim_type: str = Field(default="MANUAL", min_length=1, max_length=50)
    reason: Optional[str] = Field(default=None, max_length=500)


class UserNftClaimOut(NftClaimOut):
    mint: Optional[NftMintOut] = None
    definition: Optional[NftDefinitionOut] = None


class NftStats(ApiModel):
    total_definitions: int
    total_mints: int
    mints_by_status: Dict[str, int]
    total_claims: int
    claims_by_status: Dict[str, int]
