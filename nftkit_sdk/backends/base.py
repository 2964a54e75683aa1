"""
Chain backend interface.

Each chain family has exactly one backend class implementing this interface.
A backend translates operation descriptors into its network's native call
encoding and maps native failures onto the shared error taxonomy, which is
what keeps the dispatcher free of chain-family logic.
"""
import time
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, ClassVar, FrozenSet, List, Optional, Tuple, TypeVar

from ..config import ClientSettings
from ..exceptions import NotFoundError, UnauthorizedError, UnsupportedConfigurationError
from ..models import AccessControl, ChainDescriptor, ChainFamily, TokenStandard, TransactionStatus
from ..operations import (
    ApproveOperation, DeployOperation, MintOperation, QueryKind, QueryOperation,
    TransferOperation
)
from ..signer import KeyManager, Signer

T = TypeVar("T")

# Upper bound on indexer pages fetched for one account listing
MAX_INDEXER_PAGES = 50

# Subscan's largest allowed ``row`` value
SUBSCAN_PAGE_SIZE = 100


@dataclass(frozen=True)
class SubmissionResult:
    """
    Raw outcome of a state-changing backend call.

    ``contract_address`` and ``token_id`` are only set when the backend could
    read them from the network (receipt, indexer or pre-computation).
    """
    transaction_id: str
    status: TransactionStatus = TransactionStatus.SUBMITTED
    contract_address: Optional[str] = None
    token_id: Optional[int] = None


class ChainBackend(ABC):
    """
    Abstract base class for chain backends.

    Capabilities: deploy, mint, transfer, approve, metadata update and
    read-only queries. Reads never require a signer.
    """

    family: ClassVar[ChainFamily]
    SUPPORTED_DEPLOYMENTS: ClassVar[FrozenSet[Tuple[TokenStandard, AccessControl]]] = frozenset()

    # Seconds between indexer lookups while waiting for a receipt
    poll_interval: float = 2.0

    def __init__(
        self,
        key_manager: KeyManager,
        settings: Optional[ClientSettings] = None,
        logger: Optional[logging.Logger] = None
    ):
        self.key_manager = key_manager
        self.settings = settings or ClientSettings()
        self.logger = logger or logging.getLogger(self.__class__.__module__)

    @classmethod
    def supports_deployment(cls, standard: TokenStandard, access: AccessControl) -> bool:
        return (standard, access) in cls.SUPPORTED_DEPLOYMENTS

    @staticmethod
    @abstractmethod
    def is_valid_address(address: str) -> bool:
        """Whether ``address`` is a well-formed account address on this family"""
        pass

    @staticmethod
    @abstractmethod
    def is_valid_contract(address: str) -> bool:
        """Whether ``address`` is a well-formed collection/contract reference"""
        pass

    # --- state-changing capabilities -------------------------------------

    @abstractmethod
    def deploy(self, descriptor: ChainDescriptor, op: DeployOperation) -> SubmissionResult:
        """
        Deploy a new collection.

        Raises:
            DeploymentError: If the network rejects the deployment
            NetworkUnavailableError: If the endpoint cannot be reached
        """
        pass

    @abstractmethod
    def mint(self, descriptor: ChainDescriptor, op: MintOperation) -> SubmissionResult:
        """
        Mint one token whose metadata pointer is ``op.metadata_uri``.

        The token id is read from the network after submission, never
        predicted beforehand.
        """
        pass

    @abstractmethod
    def transfer(self, descriptor: ChainDescriptor, op: TransferOperation) -> SubmissionResult:
        pass

    @abstractmethod
    def approve(self, descriptor: ChainDescriptor, op: ApproveOperation) -> SubmissionResult:
        pass

    @abstractmethod
    def set_token_uri(
        self,
        descriptor: ChainDescriptor,
        contract_address: str,
        token_id: int,
        token_uri: str,
        signer_ref: str
    ) -> SubmissionResult:
        pass

    # --- read-only capabilities ------------------------------------------

    @abstractmethod
    def owner_of(self, descriptor: ChainDescriptor, contract_address: str, token_id: int) -> str:
        pass

    @abstractmethod
    def balance_of(self, descriptor: ChainDescriptor, contract_address: str, owner: str) -> int:
        pass

    @abstractmethod
    def token_uri(self, descriptor: ChainDescriptor, contract_address: str, token_id: int) -> str:
        pass

    @abstractmethod
    def collection_info(self, descriptor: ChainDescriptor, contract_address: str) -> dict:
        """Returns a mapping with ``name``, ``symbol`` and ``total_supply``"""
        pass

    @abstractmethod
    def is_approved_for_all(
        self, descriptor: ChainDescriptor, contract_address: str, owner: str, operator: str
    ) -> bool:
        pass

    @abstractmethod
    def get_approved(self, descriptor: ChainDescriptor, contract_address: str, token_id: int) -> Optional[str]:
        pass

    @abstractmethod
    def account_nfts(self, descriptor: ChainDescriptor, owner: str) -> List[Any]:
        """Family-specific holding records for ``owner``"""
        pass

    @abstractmethod
    def tx_url(self, descriptor: ChainDescriptor, transaction_id: str) -> Optional[str]:
        pass

    def query(self, descriptor: ChainDescriptor, op: QueryOperation) -> Any:
        """
        Execute a read-only query and return the backend's raw result.

        Raises:
            NotFoundError: If the token or contract does not exist
        """
        kind = op.kind
        if kind == QueryKind.OWNER:
            return self.owner_of(descriptor, op.contract_address, op.token_id)
        if kind == QueryKind.BALANCE:
            return self.balance_of(descriptor, op.contract_address, op.owner)
        if kind in (QueryKind.METADATA_URI, QueryKind.METADATA):
            return self.token_uri(descriptor, op.contract_address, op.token_id)
        if kind == QueryKind.COLLECTION_INFO:
            return self.collection_info(descriptor, op.contract_address)
        if kind == QueryKind.APPROVAL_STATUS:
            return self.is_approved_for_all(descriptor, op.contract_address, op.owner, op.operator)
        if kind == QueryKind.APPROVED:
            return self.get_approved(descriptor, op.contract_address, op.token_id)
        if kind == QueryKind.ACCOUNT_NFTS:
            return self.account_nfts(descriptor, op.owner)
        raise UnsupportedConfigurationError(f"Query {kind} is not supported on {descriptor.id}")

    # --- helpers ----------------------------------------------------------

    def resolve_signer(self, signer_ref: str) -> Signer:
        """
        Resolve a signer through the key manager.

        Raises:
            UnauthorizedError: If the reference cannot be resolved
        """
        if not signer_ref:
            raise UnauthorizedError("No signer reference supplied")
        try:
            signer = self.key_manager.resolve_signer(signer_ref)
        except Exception as e:
            # The reference itself is never logged
            self.logger.warning(f"Signer resolution failed: {type(e).__name__}")
            raise UnauthorizedError("Signer could not be resolved")
        if signer is None or not getattr(signer, "address", None):
            raise UnauthorizedError("Signer could not be resolved")
        return signer

    def await_indexed(self, lookup: Callable[[], Optional[T]], what: str) -> Optional[T]:
        """
        Poll ``lookup`` until it returns a value or the receipt timeout passes.

        A ``NotFoundError`` from the lookup counts as "not indexed yet".

        Returns:
            The lookup result, or None on timeout
        """
        timeout = self.settings.receipt_timeout
        deadline = time.monotonic() + timeout
        while True:
            try:
                result = lookup()
            except NotFoundError:
                result = None
            if result is not None:
                return result
            if time.monotonic() >= deadline:
                self.logger.warning(f"{what} not available after {timeout}s; returning submission only")
                return None
            time.sleep(self.poll_interval)

    @staticmethod
    def raw_signed(signed: Any) -> str:
        """Hex string of a signed payload returned by a signer"""
        raw = getattr(signed, "raw_transaction", signed)
        if isinstance(raw, (bytes, bytearray)):
            return "0x" + bytes(raw).hex()
        if isinstance(raw, str):
            return raw if raw.startswith("0x") else "0x" + raw
        raise UnauthorizedError("Signer returned an unusable signed payload")
