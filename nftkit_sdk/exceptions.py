"""
Exceptions for the NFT Kit SDK.

Every error raised by the SDK derives from NftKitError and carries a stable
``code`` so that a transport layer can turn it into a ``{message, code}``
response without knowing which chain backend produced it.
"""
from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    """
    Stable error codes exposed to callers.
    """
    UNKNOWN_CHAIN = "UNKNOWN_CHAIN"
    INVALID_OPERATION = "INVALID_OPERATION"
    UNSUPPORTED_CONFIGURATION = "UNSUPPORTED_CONFIGURATION"
    NETWORK_UNAVAILABLE = "NETWORK_UNAVAILABLE"
    DEPLOYMENT_FAILED = "DEPLOYMENT_FAILED"
    UNAUTHORIZED = "UNAUTHORIZED"
    NOT_FOUND = "NOT_FOUND"
    STORAGE_UNAVAILABLE = "STORAGE_UNAVAILABLE"
    TRANSACTION_REVERTED = "TRANSACTION_REVERTED"

    # Anything that is not an NftKitError
    INTERNAL_ERROR = "INTERNAL_ERROR"


class NftKitError(Exception):
    """Base exception for all NFT Kit errors."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    retryable: bool = False
    http_status: int = 500

    def __init__(self, message: str, retryable: Optional[bool] = None):
        super().__init__(message)
        self.message = message
        if retryable is not None:
            self.retryable = retryable
        # Set by the dispatcher to the pipeline stage that raised
        self.stage: Optional[str] = None


class UnknownChainError(NftKitError):
    """Raised when a chain identifier is not registered."""
    code = ErrorCode.UNKNOWN_CHAIN
    http_status = 400

    def __init__(self, chain: str):
        self.chain = chain
        super().__init__(f"Unknown chain: {chain}")


class InvalidOperationError(NftKitError):
    """Raised when operation parameters are missing or malformed."""
    code = ErrorCode.INVALID_OPERATION
    http_status = 400

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message)


class UnsupportedConfigurationError(NftKitError):
    """Raised when an operation is not implemented for a chain family."""
    code = ErrorCode.UNSUPPORTED_CONFIGURATION
    http_status = 400


class NetworkUnavailableError(NftKitError):
    """Raised when an RPC endpoint or indexer cannot be reached in time."""
    code = ErrorCode.NETWORK_UNAVAILABLE
    retryable = True
    http_status = 503


class DeploymentError(NftKitError):
    """Raised when the network rejects a contract deployment."""
    code = ErrorCode.DEPLOYMENT_FAILED
    http_status = 400


class UnauthorizedError(NftKitError):
    """Raised when a signer cannot be resolved or lacks permission."""
    code = ErrorCode.UNAUTHORIZED
    http_status = 401


class NotFoundError(NftKitError):
    """Raised when a token or contract does not exist on the network."""
    code = ErrorCode.NOT_FOUND
    http_status = 404


class StorageUnavailableError(NftKitError):
    """Raised when the off-chain content-addressed store fails."""
    code = ErrorCode.STORAGE_UNAVAILABLE
    retryable = True
    http_status = 503


class TransactionRevertedError(NftKitError):
    """Raised when a submitted transaction is reported as failed."""
    code = ErrorCode.TRANSACTION_REVERTED
    http_status = 400

    def __init__(self, message: str, transaction_id: Optional[str] = None):
        self.transaction_id = transaction_id
        super().__init__(message)
