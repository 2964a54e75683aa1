"""
Backend-agnostic operation descriptors.

The normalizer builds exactly one of these per request and hands it to a
single chain backend call. Descriptors are frozen and never persisted.
``signer_ref`` is excluded from ``repr`` so descriptors can be logged.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union

from .models import (
    AccessControl, DeploymentOptions, MetadataStorageType, NftMetadata, TokenStandard
)


class OperationKind(str, Enum):
    DEPLOY = "DEPLOY"
    MINT = "MINT"
    TRANSFER = "TRANSFER"
    APPROVE = "APPROVE"
    UPDATE_TRAIT = "UPDATE_TRAIT"
    QUERY = "QUERY"


class QueryKind(str, Enum):
    OWNER = "OWNER"
    BALANCE = "BALANCE"
    METADATA_URI = "METADATA_URI"
    METADATA = "METADATA"
    COLLECTION_INFO = "COLLECTION_INFO"
    APPROVAL_STATUS = "APPROVAL_STATUS"
    APPROVED = "APPROVED"
    ACCOUNT_NFTS = "ACCOUNT_NFTS"


@dataclass(frozen=True)
class DeployOperation:
    name: str
    symbol: str
    token_standard: TokenStandard
    access_control: AccessControl
    options: DeploymentOptions
    signer_ref: str = field(repr=False)


@dataclass(frozen=True)
class MintOperation:
    contract_address: str
    recipient: str
    storage_type: MetadataStorageType
    signer_ref: str = field(repr=False)
    metadata_uri: Optional[str] = None
    metadata: Optional[NftMetadata] = None


@dataclass(frozen=True)
class TransferOperation:
    """transferFrom, safeTransferFrom and safeTransferFrom with data"""
    contract_address: str
    from_address: str
    to_address: str
    token_id: int
    signer_ref: str = field(repr=False)
    safe: bool = False
    data: Optional[bytes] = None


@dataclass(frozen=True)
class ApproveOperation:
    """
    Single-token approval when ``token_id`` is set, operator approval
    (setApprovalForAll) when ``operator`` is set.
    """
    contract_address: str
    signer_ref: str = field(repr=False)
    token_id: Optional[int] = None
    to_address: Optional[str] = None
    operator: Optional[str] = None
    approved: bool = True

    @property
    def for_all(self) -> bool:
        return self.operator is not None


@dataclass(frozen=True)
class UpdateTraitOperation:
    contract_address: str
    token_id: int
    trait_key: str
    trait_value: str
    signer_ref: str = field(repr=False)


@dataclass(frozen=True)
class QueryOperation:
    kind: QueryKind
    contract_address: Optional[str] = None
    token_id: Optional[int] = None
    owner: Optional[str] = None
    operator: Optional[str] = None


OperationDescriptor = Union[
    DeployOperation, MintOperation, TransferOperation,
    ApproveOperation, UpdateTraitOperation, QueryOperation
]
