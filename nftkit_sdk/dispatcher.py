"""
NftDispatcher - single entry point for NFT operations across chain families.
"""
import logging
from contextlib import contextmanager
from dataclasses import replace
from typing import Any, Dict, Iterator, List, Mapping, Optional, Union

from .backends import BACKEND_CLASSES, ChainBackend, get_backend
from .config import ClientSettings
from .envelope import (
    account_nfts_response, deployment_response, error_response, minting_response,
    query_result, transaction_response
)
from .exceptions import InvalidOperationError, UnsupportedConfigurationError
from .metadata import MetadataResolver
from .models import (
    AccessControl, AccountNfts, ChainDescriptor, ChainFamily, DeploymentResponse, ErrorResponse,
    MetadataStorageType, MintingResponse, NftMetadata, StorageReference, TokenCollectionInfo,
    TokenStandard, TransactionResponse
)
from .normalizer import OperationNormalizer
from .operations import (
    ApproveOperation, DeployOperation, MintOperation, OperationDescriptor, OperationKind,
    QueryKind, QueryOperation, TransferOperation, UpdateTraitOperation
)
from .registry import ChainRegistry
from .signer import KeyManager
from .storage import IpfsStorage

STAGE_REGISTRY = "registry"
STAGE_NORMALIZE = "normalize"
STAGE_BACKEND = "backend"
STAGE_METADATA = "metadata"
STAGE_ENVELOPE = "envelope"


class NftDispatcher:
    """
    Dispatches NFT operations to the backend of the requested chain.

    Every call runs registry lookup, normalization, backend execution,
    metadata resolution (when metadata is involved) and envelope building.
    Exceptions propagate unchanged with ``stage`` set to the step that
    raised them.
    """

    def __init__(
        self,
        registry: ChainRegistry,
        key_manager: KeyManager,
        settings: Optional[ClientSettings] = None,
        backends: Optional[Mapping[ChainFamily, ChainBackend]] = None,
        storage: Optional[IpfsStorage] = None,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize the dispatcher

        Args:
            registry: Chain registry
            key_manager: Resolves signer references into signers
            settings: Client settings (defaults apply when omitted)
            backends: Backend per chain family; one of each built-in backend by default
            storage: IPFS storage client; built from settings when omitted
            logger: Optional logger instance to use for debug/info logging
        """
        self.registry = registry
        self.settings = settings or ClientSettings()
        self.logger = logger or logging.getLogger(__name__)

        if backends is None:
            backends = {
                family: get_backend(family, key_manager, settings=self.settings, logger=logger)
                for family in BACKEND_CLASSES
            }
        self.backends: Dict[ChainFamily, ChainBackend] = dict(backends)

        self.normalizer = OperationNormalizer(
            default_signer_ref=self.settings.default_signer_ref,
            backend_classes={family: type(backend) for family, backend in self.backends.items()}
        )
        if storage is None:
            storage = IpfsStorage(
                self.settings.pinner_url,
                gateway_url=self.settings.ipfs_gateway,
                token=self.settings.pinner_token,
                timeout=self.settings.timeout,
                logger=logger
            )
        self.metadata = MetadataResolver(storage, logger=logger)

    @classmethod
    def from_env(cls, key_manager: KeyManager, logger: Optional[logging.Logger] = None) -> "NftDispatcher":
        """Build a dispatcher from ``networks.json`` and ``NFTKIT_*`` variables"""
        return cls(ChainRegistry.from_config(), key_manager, settings=ClientSettings.from_env(), logger=logger)

    # --- generic entry point ------------------------------------------

    def dispatch(self, operation: Union[OperationKind, str], chain: str, params: Mapping[str, Any]) -> Any:
        """
        Run one operation given its kind and raw parameters.

        Args:
            operation: Operation kind (``DEPLOY``, ``MINT``, ``TRANSFER``,
                ``APPROVE``, ``UPDATE_TRAIT`` or ``QUERY``)
            chain: Chain identifier (case-insensitive)
            params: Raw parameters in snake_case or camelCase

        Returns:
            The response model or query value for the operation
        """
        with self._stage(STAGE_REGISTRY):
            descriptor = self.registry.resolve(chain)
            backend = self._backend(descriptor)
        with self._stage(STAGE_NORMALIZE):
            op = self.normalizer.normalize(operation, params, descriptor)
        self.logger.debug(f"Dispatching {type(op).__name__} to {descriptor.id}")
        return self._execute(backend, descriptor, op)

    # --- state-changing operations ------------------------------------

    def deploy(
        self,
        chain: str,
        name: str,
        symbol: str,
        token_standard: Union[TokenStandard, str] = TokenStandard.ERC721,
        access_control: Union[AccessControl, str] = AccessControl.OWNABLE,
        options: Optional[Mapping[str, Any]] = None,
        signer_ref: Optional[str] = None
    ) -> DeploymentResponse:
        return self.dispatch(OperationKind.DEPLOY, chain, {
            "name": name,
            "symbol": symbol,
            "token_standard": token_standard,
            "access_control": access_control,
            "options": options,
            "signer_ref": signer_ref,
        })

    def mint(
        self,
        chain: str,
        contract_address: str,
        recipient: str,
        metadata_uri: Optional[str] = None,
        metadata: Optional[Union[NftMetadata, Mapping[str, Any]]] = None,
        storage_type: Union[MetadataStorageType, str] = MetadataStorageType.OFF_CHAIN,
        signer_ref: Optional[str] = None
    ) -> MintingResponse:
        """
        Mint one token.

        Exactly one of ``metadata_uri`` or ``metadata`` must be given. Inline
        metadata is stored according to ``storage_type`` before the mint is
        submitted.
        """
        return self.dispatch(OperationKind.MINT, chain, {
            "contract_address": contract_address,
            "recipient": recipient,
            "metadata_uri": metadata_uri,
            "metadata": metadata,
            "storage_type": storage_type,
            "signer_ref": signer_ref,
        })

    def update_metadata_trait(
        self,
        chain: str,
        contract_address: str,
        token_id: Union[int, str],
        trait_key: str,
        trait_value: Any,
        signer_ref: Optional[str] = None
    ) -> TransactionResponse:
        return self.dispatch(OperationKind.UPDATE_TRAIT, chain, {
            "contract_address": contract_address,
            "token_id": token_id,
            "trait_key": trait_key,
            "trait_value": trait_value,
            "signer_ref": signer_ref,
        })

    def transfer_from(
        self,
        chain: str,
        contract_address: str,
        from_address: str,
        to_address: str,
        token_id: Union[int, str],
        signer_ref: Optional[str] = None
    ) -> TransactionResponse:
        return self.dispatch(OperationKind.TRANSFER, chain, {
            "contract_address": contract_address,
            "from_address": from_address,
            "to_address": to_address,
            "token_id": token_id,
            "signer_ref": signer_ref,
        })

    def safe_transfer_from(
        self,
        chain: str,
        contract_address: str,
        from_address: str,
        to_address: str,
        token_id: Union[int, str],
        data: Optional[Union[bytes, str]] = None,
        signer_ref: Optional[str] = None
    ) -> TransactionResponse:
        return self.dispatch(OperationKind.TRANSFER, chain, {
            "contract_address": contract_address,
            "from_address": from_address,
            "to_address": to_address,
            "token_id": token_id,
            "safe": True,
            "data": data,
            "signer_ref": signer_ref,
        })

    def approve(
        self,
        chain: str,
        contract_address: str,
        to_address: str,
        token_id: Union[int, str],
        signer_ref: Optional[str] = None
    ) -> TransactionResponse:
        return self.dispatch(OperationKind.APPROVE, chain, {
            "contract_address": contract_address,
            "to_address": to_address,
            "token_id": token_id,
            "signer_ref": signer_ref,
        })

    def set_approval_for_all(
        self,
        chain: str,
        contract_address: str,
        operator: str,
        approved: bool,
        signer_ref: Optional[str] = None
    ) -> TransactionResponse:
        return self.dispatch(OperationKind.APPROVE, chain, {
            "contract_address": contract_address,
            "operator": operator,
            "approved": approved,
            "signer_ref": signer_ref,
        })

    # --- read-only operations -----------------------------------------

    def get_metadata_uri(self, chain: str, contract_address: str, token_id: Union[int, str]) -> str:
        return self._query(chain, QueryKind.METADATA_URI, contract_address=contract_address, token_id=token_id)

    def get_metadata(self, chain: str, contract_address: str, token_id: Union[int, str]) -> NftMetadata:
        return self._query(chain, QueryKind.METADATA, contract_address=contract_address, token_id=token_id)

    def balance_of(self, chain: str, contract_address: str, owner: str) -> int:
        return self._query(chain, QueryKind.BALANCE, contract_address=contract_address, owner=owner)

    def owner_of(self, chain: str, contract_address: str, token_id: Union[int, str]) -> str:
        return self._query(chain, QueryKind.OWNER, contract_address=contract_address, token_id=token_id)

    def collection_info(self, chain: str, contract_address: str) -> TokenCollectionInfo:
        return self._query(chain, QueryKind.COLLECTION_INFO, contract_address=contract_address)

    def is_approved_for_all(self, chain: str, contract_address: str, owner: str, operator: str) -> bool:
        return self._query(
            chain, QueryKind.APPROVAL_STATUS,
            contract_address=contract_address, owner=owner, operator=operator
        )

    def get_approved(self, chain: str, contract_address: str, token_id: Union[int, str]) -> Optional[str]:
        return self._query(chain, QueryKind.APPROVED, contract_address=contract_address, token_id=token_id)

    def account_nfts(self, owner: str, chain: Optional[str] = None) -> AccountNfts:
        """
        NFTs held by ``owner``.

        With ``chain`` set only that chain is queried. Otherwise every
        registered chain whose family accepts the owner's address format and
        which has an NFT indexer is queried, and results are grouped by family.

        Raises:
            InvalidOperationError: If no registered chain accepts the address
        """
        if chain is not None:
            return self._query(chain, QueryKind.ACCOUNT_NFTS, owner=owner)

        holdings: Dict[ChainFamily, List[Any]] = {}
        accepted = False
        for descriptor in self.registry.chains():
            backend = self.backends.get(descriptor.family)
            if backend is None or not backend.is_valid_address(owner):
                continue
            accepted = True
            with self._stage(STAGE_BACKEND):
                try:
                    items = backend.account_nfts(descriptor, owner)
                except UnsupportedConfigurationError as e:
                    self.logger.debug(f"Skipping {descriptor.id} in NFT listing: {e}")
                    continue
            holdings.setdefault(descriptor.family, []).extend(items)

        if not accepted:
            with self._stage(STAGE_NORMALIZE):
                raise InvalidOperationError(f"No registered chain accepts address {owner!r}", field="owner")
        with self._stage(STAGE_ENVELOPE):
            return account_nfts_response(holdings)

    # --- off-chain storage --------------------------------------------

    def publish_file(self, data: bytes, content_type: str = "application/octet-stream") -> StorageReference:
        """Pin a file to IPFS; the returned ``uri`` can be minted as metadata URI or image"""
        with self._stage(STAGE_METADATA):
            return self.metadata.publish_file(data, content_type=content_type)

    def publish_metadata(self, metadata: Union[NftMetadata, Mapping[str, Any]]) -> StorageReference:
        with self._stage(STAGE_NORMALIZE):
            if not isinstance(metadata, NftMetadata):
                metadata = self.normalizer.parse_metadata(metadata)
        with self._stage(STAGE_METADATA):
            return self.metadata.publish_metadata(metadata)

    @staticmethod
    def error_response(error: Exception) -> ErrorResponse:
        """Uniform ``{message, code}`` shape for any exception raised by the dispatcher"""
        return error_response(error)

    # --- internals ----------------------------------------------------

    def _query(self, chain: str, kind: QueryKind, **params: Any) -> Any:
        return self.dispatch(OperationKind.QUERY, chain, {"kind": kind, **params})

    def _execute(self, backend: ChainBackend, descriptor: ChainDescriptor, op: OperationDescriptor) -> Any:
        if isinstance(op, DeployOperation):
            with self._stage(STAGE_BACKEND):
                result = backend.deploy(descriptor, op)
            with self._stage(STAGE_ENVELOPE):
                return deployment_response(backend, descriptor, result)

        if isinstance(op, MintOperation):
            with self._stage(STAGE_BACKEND):
                backend.resolve_signer(op.signer_ref)
            # Publishing completes before anything is submitted
            with self._stage(STAGE_METADATA):
                token_uri = self.metadata.token_uri_for_mint(op)
            with self._stage(STAGE_BACKEND):
                result = backend.mint(descriptor, replace(op, metadata_uri=token_uri, metadata=None))
            with self._stage(STAGE_ENVELOPE):
                return minting_response(backend, descriptor, result)

        if isinstance(op, UpdateTraitOperation):
            return self._update_trait(backend, descriptor, op)

        if isinstance(op, (TransferOperation, ApproveOperation)):
            with self._stage(STAGE_BACKEND):
                if isinstance(op, TransferOperation):
                    result = backend.transfer(descriptor, op)
                else:
                    result = backend.approve(descriptor, op)
            with self._stage(STAGE_ENVELOPE):
                return transaction_response(backend, descriptor, result)

        return self._execute_query(backend, descriptor, op)

    def _update_trait(
        self, backend: ChainBackend, descriptor: ChainDescriptor, op: UpdateTraitOperation
    ) -> TransactionResponse:
        with self._stage(STAGE_BACKEND):
            backend.resolve_signer(op.signer_ref)
            current_uri = self.metadata.resolve_uri(backend, descriptor, op.contract_address, op.token_id)
        with self._stage(STAGE_METADATA):
            current = self.metadata.fetch(current_uri)
            updated = self.metadata.with_trait(current, op.trait_key, op.trait_value)
            new_uri = self.metadata.republish(current_uri, updated)
        with self._stage(STAGE_BACKEND):
            result = backend.set_token_uri(
                descriptor, op.contract_address, op.token_id, new_uri, op.signer_ref
            )
        with self._stage(STAGE_ENVELOPE):
            return transaction_response(backend, descriptor, result)

    def _execute_query(self, backend: ChainBackend, descriptor: ChainDescriptor, op: QueryOperation) -> Any:
        if op.kind == QueryKind.METADATA:
            with self._stage(STAGE_BACKEND):
                uri = self.metadata.resolve_uri(backend, descriptor, op.contract_address, op.token_id)
            with self._stage(STAGE_METADATA):
                return self.metadata.fetch(uri)

        with self._stage(STAGE_BACKEND):
            raw = backend.query(descriptor, op)
        with self._stage(STAGE_ENVELOPE):
            if op.kind == QueryKind.ACCOUNT_NFTS:
                return account_nfts_response({descriptor.family: raw})
            return query_result(op.kind, raw)

    def _backend(self, descriptor: ChainDescriptor) -> ChainBackend:
        backend = self.backends.get(descriptor.family)
        if backend is None:
            raise UnsupportedConfigurationError(f"No backend configured for {descriptor.family.value} chains")
        return backend

    @contextmanager
    def _stage(self, stage: str) -> Iterator[None]:
        try:
            yield
        except Exception as e:
            # The innermost stage wins
            if getattr(e, "stage", None) is None:
                try:
                    e.stage = stage
                except AttributeError:
                    pass
            self.logger.debug(f"{stage} stage raised {type(e).__name__}: {e}")
            raise
