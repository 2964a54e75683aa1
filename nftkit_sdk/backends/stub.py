"""
In-memory stub backend for testing without a network.
"""
import threading
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from eth_utils import keccak, to_checksum_address

from ..config import ClientSettings
from ..exceptions import NftKitError, NotFoundError, UnauthorizedError
from ..models import AccessControl, ChainDescriptor, ChainFamily, EvmNftHolding, TokenStandard, TransactionStatus
from ..operations import ApproveOperation, DeployOperation, MintOperation, TransferOperation
from ..signer import KeyManager
from ..utils import is_evm_address
from .base import ChainBackend, SubmissionResult

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


@dataclass
class _Token:
    owner: str
    uri: str
    approved: Optional[str] = None


@dataclass
class _Collection:
    name: str
    symbol: str
    admin: str
    transferable: bool
    tokens: Dict[int, _Token] = field(default_factory=dict)
    operators: Set[Tuple[str, str]] = field(default_factory=set)
    next_id: int = 1


class StubBackend(ChainBackend):
    """
    ERC-721 semantics kept in process memory.

    Mints are confirmed immediately with sequential token ids starting at 1.
    ``submissions`` counts every operation that reached the network stage, so
    tests can assert that nothing was submitted after an early failure.
    """

    family = ChainFamily.EVM
    SUPPORTED_DEPLOYMENTS = frozenset({
        (TokenStandard.ERC721, AccessControl.OWNABLE),
        (TokenStandard.ERC721, AccessControl.ROLE_BASED_ACCESS_CONTROL),
    })

    def __init__(
        self,
        key_manager: KeyManager,
        settings: Optional[ClientSettings] = None,
        logger: Optional[logging.Logger] = None
    ):
        super().__init__(key_manager, settings, logger)
        self._collections: Dict[Tuple[str, str], _Collection] = {}
        self._lock = threading.RLock()
        self._failure: Optional[NftKitError] = None
        self.submissions = 0

    @staticmethod
    def is_valid_address(address: str) -> bool:
        return is_evm_address(address)

    @staticmethod
    def is_valid_contract(address: str) -> bool:
        return is_evm_address(address)

    def fail_next(self, error: NftKitError) -> None:
        """Make the next submission raise ``error`` without changing state"""
        with self._lock:
            self._failure = error

    # --- state-changing -----------------------------------------------

    def deploy(self, descriptor: ChainDescriptor, op: DeployOperation) -> SubmissionResult:
        signer = self.resolve_signer(op.signer_ref)
        with self._lock:
            tx_id = self._submission()
            address = to_checksum_address(keccak(text=f"{descriptor.id}:{tx_id}")[12:])
            self._collections[(descriptor.id, address.lower())] = _Collection(
                name=op.name,
                symbol=op.symbol,
                admin=signer.address,
                transferable=op.options.transferable,
            )
        self.logger.debug(f"Stub deployed {op.symbol} at {address}")
        return SubmissionResult(
            transaction_id=tx_id, status=TransactionStatus.CONFIRMED, contract_address=address
        )

    def mint(self, descriptor: ChainDescriptor, op: MintOperation) -> SubmissionResult:
        signer = self.resolve_signer(op.signer_ref)
        with self._lock:
            collection = self._collection(descriptor, op.contract_address)
            if not _same(signer.address, collection.admin):
                raise UnauthorizedError("Ownable: caller is not the owner")
            tx_id = self._submission()
            token_id = collection.next_id
            collection.next_id += 1
            collection.tokens[token_id] = _Token(owner=to_checksum_address(op.recipient), uri=op.metadata_uri)
        return SubmissionResult(transaction_id=tx_id, status=TransactionStatus.CONFIRMED, token_id=token_id)

    def transfer(self, descriptor: ChainDescriptor, op: TransferOperation) -> SubmissionResult:
        signer = self.resolve_signer(op.signer_ref)
        with self._lock:
            collection = self._collection(descriptor, op.contract_address)
            token = self._token(collection, op.token_id)
            if not _same(token.owner, op.from_address):
                raise UnauthorizedError("ERC721: transfer from incorrect owner")
            if not self._may_move(collection, token, signer.address):
                raise UnauthorizedError("ERC721: caller is not token owner or approved")
            tx_id = self._submission()
            token.owner = to_checksum_address(op.to_address)
            token.approved = None
        return SubmissionResult(transaction_id=tx_id, status=TransactionStatus.CONFIRMED)

    def approve(self, descriptor: ChainDescriptor, op: ApproveOperation) -> SubmissionResult:
        signer = self.resolve_signer(op.signer_ref)
        with self._lock:
            collection = self._collection(descriptor, op.contract_address)
            if op.for_all:
                tx_id = self._submission()
                pair = (signer.address.lower(), op.operator.lower())
                if op.approved:
                    collection.operators.add(pair)
                else:
                    collection.operators.discard(pair)
            else:
                token = self._token(collection, op.token_id)
                if not _same(token.owner, signer.address) and \
                        (token.owner.lower(), signer.address.lower()) not in collection.operators:
                    raise UnauthorizedError("ERC721: approve caller is not token owner or approved for all")
                tx_id = self._submission()
                token.approved = to_checksum_address(op.to_address)
        return SubmissionResult(transaction_id=tx_id, status=TransactionStatus.CONFIRMED)

    def set_token_uri(
        self,
        descriptor: ChainDescriptor,
        contract_address: str,
        token_id: int,
        token_uri: str,
        signer_ref: str
    ) -> SubmissionResult:
        signer = self.resolve_signer(signer_ref)
        with self._lock:
            collection = self._collection(descriptor, contract_address)
            token = self._token(collection, token_id)
            if not _same(signer.address, collection.admin):
                raise UnauthorizedError("Ownable: caller is not the owner")
            tx_id = self._submission()
            token.uri = token_uri
        return SubmissionResult(transaction_id=tx_id, status=TransactionStatus.CONFIRMED)

    # --- read-only ----------------------------------------------------

    def owner_of(self, descriptor: ChainDescriptor, contract_address: str, token_id: int) -> str:
        with self._lock:
            return self._token(self._collection(descriptor, contract_address), token_id).owner

    def balance_of(self, descriptor: ChainDescriptor, contract_address: str, owner: str) -> int:
        with self._lock:
            collection = self._collection(descriptor, contract_address)
            return sum(1 for token in collection.tokens.values() if _same(token.owner, owner))

    def token_uri(self, descriptor: ChainDescriptor, contract_address: str, token_id: int) -> str:
        with self._lock:
            return self._token(self._collection(descriptor, contract_address), token_id).uri

    def collection_info(self, descriptor: ChainDescriptor, contract_address: str) -> dict:
        with self._lock:
            collection = self._collection(descriptor, contract_address)
            return {
                "name": collection.name,
                "symbol": collection.symbol,
                "total_supply": len(collection.tokens),
            }

    def is_approved_for_all(
        self, descriptor: ChainDescriptor, contract_address: str, owner: str, operator: str
    ) -> bool:
        with self._lock:
            collection = self._collection(descriptor, contract_address)
            return (owner.lower(), operator.lower()) in collection.operators

    def get_approved(self, descriptor: ChainDescriptor, contract_address: str, token_id: int) -> Optional[str]:
        with self._lock:
            return self._token(self._collection(descriptor, contract_address), token_id).approved

    def account_nfts(self, descriptor: ChainDescriptor, owner: str) -> List[EvmNftHolding]:
        with self._lock:
            return [
                EvmNftHolding(
                    chain=descriptor.id,
                    contract_address=to_checksum_address(address),
                    token_id=token_id,
                    token_type="ERC721",
                    title=collection.name,
                    token_uri=token.uri,
                )
                for (chain, address), collection in self._collections.items() if chain == descriptor.id
                for token_id, token in sorted(collection.tokens.items()) if _same(token.owner, owner)
            ]

    def tx_url(self, descriptor: ChainDescriptor, transaction_id: str) -> Optional[str]:
        if not descriptor.explorer_url:
            return None
        return f"{descriptor.explorer_url.rstrip('/')}/tx/{transaction_id}"

    # --- internals ----------------------------------------------------

    def _submission(self) -> str:
        if self._failure is not None:
            error, self._failure = self._failure, None
            raise error
        self.submissions += 1
        return "0x" + keccak(text=f"stub-tx-{self.submissions}").hex()

    def _collection(self, descriptor: ChainDescriptor, address: str) -> _Collection:
        collection = self._collections.get((descriptor.id, address.lower()))
        if collection is None:
            raise NotFoundError(f"No ERC721 contract at {address} on {descriptor.id}")
        return collection

    @staticmethod
    def _token(collection: _Collection, token_id: int) -> _Token:
        token = collection.tokens.get(token_id)
        if token is None:
            raise NotFoundError(f"ERC721: invalid token ID {token_id}")
        return token

    @staticmethod
    def _may_move(collection: _Collection, token: _Token, caller: str) -> bool:
        if not collection.transferable:
            return False
        return (
            _same(token.owner, caller)
            or (token.approved is not None and _same(token.approved, caller))
            or (token.owner.lower(), caller.lower()) in collection.operators
        )


def _same(a: str, b: str) -> bool:
    return a.lower() == b.lower()
