"""
NFT Kit SDK - NFT lifecycle operations dispatched across EVM, Tezos and
Substrate chains through one request surface.
"""
from .backends import (
    BACKEND_CLASSES, ChainBackend, EvmBackend, StubBackend, SubmissionResult,
    TezosBackend, UniqueBackend, get_backend
)
from .config import ClientSettings, NetworkConfig
from .dispatcher import NftDispatcher
from .exceptions import (
    DeploymentError, ErrorCode, InvalidOperationError, NetworkUnavailableError, NftKitError,
    NotFoundError, StorageUnavailableError, TransactionRevertedError, UnauthorizedError,
    UnknownChainError, UnsupportedConfigurationError
)
from .metadata import MetadataResolver
from .models import (
    AccessControl, AccountNfts, ChainDescriptor, ChainFamily, DeploymentOptions,
    DeploymentResponse, ErrorResponse, EvmNftHolding, IndexerApi, MetadataStorageType, MintingResponse,
    NftAttribute, NftMetadata, StorageReference, SubstrateNftHolding, TezosNftHolding,
    TokenCollectionInfo, TokenIdentity, TokenStandard, TransactionResponse, TransactionStatus
)
from .normalizer import OperationNormalizer
from .operations import OperationKind, QueryKind
from .registry import ChainRegistry
from .signer import KeyManager, Signer, SignerNotFoundError, StaticKeyManager
from .signer.local import LocalSigner
from .storage import IpfsStorage
from .version import __version__

__all__ = [
    "NftDispatcher",
    "ChainRegistry",
    "OperationNormalizer",
    "MetadataResolver",
    "IpfsStorage",
    "ClientSettings",
    "NetworkConfig",
    "ChainBackend",
    "SubmissionResult",
    "EvmBackend",
    "TezosBackend",
    "UniqueBackend",
    "StubBackend",
    "BACKEND_CLASSES",
    "get_backend",
    "KeyManager",
    "Signer",
    "SignerNotFoundError",
    "StaticKeyManager",
    "LocalSigner",
    "OperationKind",
    "QueryKind",
    "AccessControl",
    "AccountNfts",
    "ChainDescriptor",
    "ChainFamily",
    "DeploymentOptions",
    "DeploymentResponse",
    "ErrorResponse",
    "EvmNftHolding",
    "IndexerApi",
    "MetadataStorageType",
    "MintingResponse",
    "NftAttribute",
    "NftMetadata",
    "StorageReference",
    "SubstrateNftHolding",
    "TezosNftHolding",
    "TokenCollectionInfo",
    "TokenIdentity",
    "TokenStandard",
    "TransactionResponse",
    "TransactionStatus",
    "ErrorCode",
    "NftKitError",
    "UnknownChainError",
    "InvalidOperationError",
    "UnsupportedConfigurationError",
    "NetworkUnavailableError",
    "DeploymentError",
    "UnauthorizedError",
    "NotFoundError",
    "StorageUnavailableError",
    "TransactionRevertedError",
    "__version__",
]
