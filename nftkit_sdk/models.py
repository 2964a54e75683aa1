"""
Data models for the NFT Kit SDK.
"""
from enum import Enum
from typing import Dict, Any, Optional, List

from pydantic import BaseModel, ConfigDict, Field

from .exceptions import ErrorCode, NftKitError


class ChainFamily(str, Enum):
    """Chain families sharing one transaction/contract model"""
    EVM = "EVM"
    TEZOS = "TEZOS"
    SUBSTRATE = "SUBSTRATE"


class TokenStandard(str, Enum):
    ERC721 = "ERC721"
    ERC1155 = "ERC1155"
    FA2 = "FA2"
    UNIQUE_NFT = "UNIQUE_NFT"


class AccessControl(str, Enum):
    OWNABLE = "OWNABLE"
    ROLE_BASED_ACCESS_CONTROL = "ROLE_BASED_ACCESS_CONTROL"


class MetadataStorageType(str, Enum):
    """Where minted metadata lives"""
    ON_CHAIN = "ON_CHAIN"
    OFF_CHAIN = "OFF_CHAIN"


class TransactionStatus(str, Enum):
    SUBMITTED = "SUBMITTED"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"


class IndexerApi(str, Enum):
    """Read API spoken by a chain's ``indexer`` URL"""
    ALCHEMY = "ALCHEMY"
    TZKT = "TZKT"
    SUBSCAN = "SUBSCAN"


class ChainDescriptor(BaseModel):
    """
    Static description of one registered network.

    Instances are frozen; the registry builds them once from configuration.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    family: ChainFamily
    rpc_endpoint: str = Field(..., alias="rpc")
    native_unit_decimals: int = Field(18, alias="decimals")
    chain_id: Optional[int] = Field(None, alias="chainId")
    indexer_url: Optional[str] = Field(None, alias="indexer")
    # Unset means the family default: Alchemy for EVM, TzKT for Tezos, Subscan for Unique
    indexer_api: Optional[IndexerApi] = Field(None, alias="indexerApi")
    explorer_url: Optional[str] = Field(None, alias="explorer")


class DeploymentOptions(BaseModel):
    """Collection options applied at deployment time"""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    transferable: bool = True
    burnable: bool = True
    token_limit: Optional[int] = Field(None, alias="tokenLimit")


class NftAttribute(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    trait_type: str
    value: Any
    display_type: Optional[str] = None


class NftMetadata(BaseModel):
    """
    NFT metadata document in the common marketplace JSON layout.

    Unknown top-level keys are kept so that re-publishing a fetched document
    does not drop them.
    """
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    name: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None
    image_data: Optional[str] = None
    external_url: Optional[str] = None
    animation_url: Optional[str] = None
    attributes: List[NftAttribute] = Field(default_factory=list)

    def to_document(self) -> Dict[str, Any]:
        """JSON document as stored on-chain or pinned off-chain"""
        return self.model_dump(exclude_none=True)


class TokenIdentity(BaseModel):
    """The (chain, contract, token) triple that identifies a token"""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    chain_id: str = Field(..., alias="chain")
    contract_address: str = Field(..., alias="contractAddress")
    token_id: int = Field(..., alias="tokenId")


class DeploymentResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    transaction_id: str = Field(..., alias="transactionId")
    contract_address: Optional[str] = Field(None, alias="contractAddress")
    status: TransactionStatus = TransactionStatus.SUBMITTED
    explorer_url: Optional[str] = Field(None, alias="explorerUrl")


class MintingResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    transaction_id: str = Field(..., alias="transactionId")
    token_id: Optional[int] = Field(None, alias="tokenId")
    status: TransactionStatus = TransactionStatus.SUBMITTED
    explorer_url: Optional[str] = Field(None, alias="explorerUrl")


class TransactionResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    transaction_id: str = Field(..., alias="transactionId")
    status: TransactionStatus = TransactionStatus.SUBMITTED
    explorer_url: Optional[str] = Field(None, alias="explorerUrl")


class TokenCollectionInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    symbol: Optional[str] = None
    total_supply: Optional[int] = Field(None, alias="totalSupply")


class StorageReference(BaseModel):
    """Pointer to a document pinned in content-addressed storage"""
    model_config = ConfigDict(populate_by_name=True)

    cid: str
    uri: str
    gateway_url: Optional[str] = Field(None, alias="gatewayUrl")


class EvmNftHolding(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    chain: str
    contract_address: str = Field(..., alias="contractAddress")
    token_id: int = Field(..., alias="tokenId")
    token_type: Optional[str] = Field(None, alias="tokenType")
    balance: int = 1
    title: Optional[str] = None
    token_uri: Optional[str] = Field(None, alias="tokenUri")
    metadata: Optional[Dict[str, Any]] = None


class TezosNftHolding(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    chain: str
    contract_address: str = Field(..., alias="contractAddress")
    token_id: int = Field(..., alias="tokenId")
    balance: int = 1
    standard: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class SubstrateNftHolding(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    chain: str
    collection_id: str = Field(..., alias="collectionId")
    token_id: int = Field(..., alias="tokenId")
    symbol: Optional[str] = None
    image: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class AccountNfts(BaseModel):
    """
    Tagged union of per-family holdings.

    Each family keeps its own record shape; a list is None when no chain of
    that family was queried.
    """
    model_config = ConfigDict(populate_by_name=True)

    evm_nfts: Optional[List[EvmNftHolding]] = Field(None, alias="evmNfts")
    tezos_nfts: Optional[List[TezosNftHolding]] = Field(None, alias="tezosNfts")
    substrate_nfts: Optional[List[SubstrateNftHolding]] = Field(None, alias="substrateNfts")


class ErrorResponse(BaseModel):
    """Uniform error shape returned across the system boundary"""
    message: str
    code: str

    @classmethod
    def from_exception(cls, error: Exception) -> "ErrorResponse":
        """
        Map any exception to ``{message, code}``.

        Errors outside the SDK taxonomy become ``INTERNAL_ERROR`` with a
        generic message so internals are not leaked.
        """
        if isinstance(error, NftKitError):
            return cls(message=error.message, code=error.code.value)
        return cls(message="Internal server error", code=ErrorCode.INTERNAL_ERROR.value)
