"""
Substrate backend for Unique Network NFT collections.

Reads use the ``unique_*`` JSON-RPC methods of the node. Writes submit a
signed extrinsic with ``author_submitExtrinsic``; collection and token ids
are read back from the extrinsic's events through Subscan.
"""
import json
import logging
from typing import Any, Dict, List, Optional

from .._rate_limited_log import rate_limited_log
from ..config import ClientSettings
from ..exceptions import (
    DeploymentError, NetworkUnavailableError, NftKitError, NotFoundError,
    TransactionRevertedError, UnauthorizedError, UnsupportedConfigurationError
)
from ..http import HttpClient, RpcError
from ..models import (
    AccessControl, ChainDescriptor, ChainFamily, SubstrateNftHolding, TokenStandard, TransactionStatus
)
from ..operations import ApproveOperation, DeployOperation, MintOperation, TransferOperation
from ..signer import KeyManager, Signer
from ..utils import is_evm_address, is_ss58_address, to_big_int
from .base import MAX_INDEXER_PAGES, SUBSCAN_PAGE_SIZE, ChainBackend, SubmissionResult

URI_PROPERTY = "URI"

# Invalid Transaction (bad signature, nonce or fees)
_RPC_INVALID_TRANSACTION = 1010

_UNAUTHORIZED_MARKERS = (
    "badproof", "payment", "nopermission", "notowner", "addressnotinallowlist",
    "approvedvaluetoolow", "cantapprovemorethanowned", "tokenvaluenotenough",
)
_NOT_FOUND_MARKERS = ("tokennotfound", "collectionnotfound")


def cross_account(address: str) -> Dict[str, str]:
    """Unique ``CrossAccountId`` for a substrate or ethereum address"""
    if address.startswith("0x"):
        return {"Ethereum": address}
    return {"Substrate": address}


def decode_text(value: Any) -> Optional[str]:
    """Decode RPC strings returned as UTF-16 code units, hex bytes or plain text"""
    if value is None:
        return None
    if isinstance(value, list):
        return "".join(chr(unit) for unit in value)
    if isinstance(value, str) and value.startswith("0x"):
        try:
            return bytes.fromhex(value[2:]).decode("utf-8")
        except ValueError:
            return value
    return str(value)


class UniqueBackend(ChainBackend):
    """
    Backend for Unique Network (and its Opal testnet).

    Collections are addressed by their decimal collection id. Signers for this
    family receive the call (``call_module``, ``call_function``,
    ``call_args``) together with nonce, genesis hash and runtime versions, and
    return the SCALE-encoded signed extrinsic as ``raw_transaction``.
    """

    family = ChainFamily.SUBSTRATE
    SUPPORTED_DEPLOYMENTS = frozenset({(TokenStandard.UNIQUE_NFT, AccessControl.OWNABLE)})

    def __init__(
        self,
        key_manager: KeyManager,
        settings: Optional[ClientSettings] = None,
        http: Optional[HttpClient] = None,
        logger: Optional[logging.Logger] = None
    ):
        super().__init__(key_manager, settings, logger)
        headers = {"X-API-Key": self.settings.indexer_api_key} if self.settings.indexer_api_key else None
        self.http = http or HttpClient(timeout=self.settings.timeout, headers=headers)

    @staticmethod
    def is_valid_address(address: str) -> bool:
        return is_ss58_address(address) or is_evm_address(address)

    @staticmethod
    def is_valid_contract(address: str) -> bool:
        return isinstance(address, str) and address.isdigit()

    # --- state-changing -----------------------------------------------

    def deploy(self, descriptor: ChainDescriptor, op: DeployOperation) -> SubmissionResult:
        signer = self.resolve_signer(op.signer_ref)
        limits: Dict[str, Any] = {
            "transfers_enabled": op.options.transferable,
            "owner_can_destroy": op.options.burnable,
        }
        if op.options.token_limit is not None:
            limits["token_limit"] = op.options.token_limit
        data = {
            "mode": "NFT",
            "name": op.name,
            "description": "",
            "token_prefix": op.symbol,
            "limits": limits,
            "token_property_permissions": [{
                "key": URI_PROPERTY,
                "permission": {"mutable": True, "collection_admin": True, "token_owner": False},
            }],
        }
        tx_hash = self._submit(descriptor, signer, "create_collection_ex", {"data": data},
                               "deploy", deploying=True)

        events = self._await_events(descriptor, tx_hash, "Collection creation", deploying=True)
        if events is None:
            return SubmissionResult(transaction_id=tx_hash)
        collection_id = self._event_param(events, "CollectionCreated", 0)
        if collection_id is None:
            raise DeploymentError(f"Extrinsic {tx_hash} did not create a collection")
        return SubmissionResult(
            transaction_id=tx_hash,
            status=TransactionStatus.CONFIRMED,
            contract_address=str(collection_id)
        )

    def mint(self, descriptor: ChainDescriptor, op: MintOperation) -> SubmissionResult:
        signer = self.resolve_signer(op.signer_ref)
        args = {
            "collection_id": int(op.contract_address),
            "owner": cross_account(op.recipient),
            "data": {"NFT": {"properties": [{"key": URI_PROPERTY, "value": op.metadata_uri}]}},
        }
        tx_hash = self._submit(descriptor, signer, "create_item", args, "mint")

        events = self._await_events(descriptor, tx_hash, "Mint")
        if events is None:
            return SubmissionResult(transaction_id=tx_hash)
        token_id = self._event_param(events, "ItemCreated", 1)
        return SubmissionResult(
            transaction_id=tx_hash,
            status=TransactionStatus.CONFIRMED,
            token_id=to_big_int(token_id, "tokenId") if token_id is not None else None
        )

    def transfer(self, descriptor: ChainDescriptor, op: TransferOperation) -> SubmissionResult:
        if op.data is not None:
            raise UnsupportedConfigurationError("Unique transfers do not carry a data payload")
        signer = self.resolve_signer(op.signer_ref)
        args = {
            "from": cross_account(op.from_address),
            "recipient": cross_account(op.to_address),
            "collection_id": int(op.contract_address),
            "item_id": op.token_id,
            "value": 1,
        }
        tx_hash = self._submit(descriptor, signer, "transfer_from", args, "transfer")
        return SubmissionResult(transaction_id=tx_hash)

    def approve(self, descriptor: ChainDescriptor, op: ApproveOperation) -> SubmissionResult:
        signer = self.resolve_signer(op.signer_ref)
        collection_id = int(op.contract_address)
        if op.for_all:
            call = "set_allowance_for_all"
            args = {
                "collection_id": collection_id,
                "operator": cross_account(op.operator),
                "approve": op.approved,
            }
        else:
            call = "approve"
            args = {
                "spender": cross_account(op.to_address),
                "collection_id": collection_id,
                "item_id": op.token_id,
                "amount": 1 if op.approved else 0,
            }
        tx_hash = self._submit(descriptor, signer, call, args, "approve")
        return SubmissionResult(transaction_id=tx_hash)

    def set_token_uri(
        self,
        descriptor: ChainDescriptor,
        contract_address: str,
        token_id: int,
        token_uri: str,
        signer_ref: str
    ) -> SubmissionResult:
        signer = self.resolve_signer(signer_ref)
        args = {
            "collection_id": int(contract_address),
            "token_id": token_id,
            "properties": [{"key": URI_PROPERTY, "value": token_uri}],
        }
        tx_hash = self._submit(descriptor, signer, "set_token_properties", args, "setTokenProperties")
        return SubmissionResult(transaction_id=tx_hash)

    # --- read-only ----------------------------------------------------

    def owner_of(self, descriptor: ChainDescriptor, contract_address: str, token_id: int) -> str:
        owner = self._rpc(descriptor, "unique_tokenOwner", [int(contract_address), token_id])
        if not owner:
            raise NotFoundError(f"Token {token_id} not found in collection {contract_address}")
        # {"substrate": ...} or {"ethereum": ...}
        return next(iter(owner.values())) if isinstance(owner, dict) else str(owner)

    def balance_of(self, descriptor: ChainDescriptor, contract_address: str, owner: str) -> int:
        self._collection(descriptor, contract_address)
        balance = self._rpc(
            descriptor, "unique_accountBalance", [int(contract_address), cross_account(owner)]
        )
        return int(balance or 0)

    def token_uri(self, descriptor: ChainDescriptor, contract_address: str, token_id: int) -> str:
        collection_id = int(contract_address)
        if not self._rpc(descriptor, "unique_tokenExists", [collection_id, token_id]):
            raise NotFoundError(f"Token {token_id} not found in collection {contract_address}")
        properties = self._rpc(descriptor, "unique_tokenProperties", [collection_id, token_id, [URI_PROPERTY]])
        for prop in properties or []:
            if decode_text(prop.get("key")) == URI_PROPERTY:
                return decode_text(prop.get("value"))
        raise NotFoundError(f"Token {token_id} has no metadata URI")

    def collection_info(self, descriptor: ChainDescriptor, contract_address: str) -> dict:
        collection = self._collection(descriptor, contract_address)
        total = self._rpc(descriptor, "unique_totalSupply", [int(contract_address)])
        return {
            "name": decode_text(collection.get("name")),
            "symbol": decode_text(collection.get("token_prefix")),
            "total_supply": int(total) if total is not None else None,
        }

    def is_approved_for_all(
        self, descriptor: ChainDescriptor, contract_address: str, owner: str, operator: str
    ) -> bool:
        self._collection(descriptor, contract_address)
        return bool(self._rpc(
            descriptor, "unique_allowanceForAll",
            [int(contract_address), cross_account(owner), cross_account(operator)]
        ))

    def get_approved(self, descriptor: ChainDescriptor, contract_address: str, token_id: int) -> Optional[str]:
        raise UnsupportedConfigurationError("Unique allowances cannot be listed per token")

    def account_nfts(self, descriptor: ChainDescriptor, owner: str) -> List[SubstrateNftHolding]:
        holdings = []
        for page in range(MAX_INDEXER_PAGES):
            result = self._subscan(descriptor, "/api/scan/nfts/account/balances",
                                   {"address": owner, "row": SUBSCAN_PAGE_SIZE, "page": page}) or {}
            items = result.get("list") or []
            for item in items:
                holdings.append(self._holding(descriptor, item))
            total = result.get("count")
            if len(items) < SUBSCAN_PAGE_SIZE or (total is not None and len(holdings) >= int(total)):
                break
        return holdings

    def tx_url(self, descriptor: ChainDescriptor, transaction_id: str) -> Optional[str]:
        if not descriptor.explorer_url:
            return None
        return f"{descriptor.explorer_url.rstrip('/')}/extrinsic/{transaction_id}"

    # --- internals ----------------------------------------------------

    @staticmethod
    def _holding(descriptor: ChainDescriptor, item: Dict[str, Any]) -> SubstrateNftHolding:
        metadata = item.get("metadata")
        if isinstance(metadata, str):
            try:
                metadata = json.loads(metadata)
            except ValueError:
                metadata = None
        return SubstrateNftHolding(
            chain=descriptor.id,
            collection_id=str(item.get("collection_id", "")),
            token_id=to_big_int(item.get("token_id", 0), "tokenId"),
            symbol=item.get("symbol"),
            image=item.get("image"),
            metadata=metadata if isinstance(metadata, dict) else None,
        )

    def _rpc(self, descriptor: ChainDescriptor, method: str, params: list) -> Any:
        try:
            return self.http.json_rpc(descriptor.rpc_endpoint, method, params)
        except RpcError as e:
            if "not found" in e.rpc_message.lower():
                raise NotFoundError(f"{method} on {descriptor.id}: {e.rpc_message}")
            raise self._unavailable(descriptor, e)

    def _collection(self, descriptor: ChainDescriptor, contract_address: str) -> Dict[str, Any]:
        collection = self._rpc(descriptor, "unique_collectionById", [int(contract_address)])
        if not collection:
            raise NotFoundError(f"Collection {contract_address} not found on {descriptor.id}")
        return collection

    def _subscan(self, descriptor: ChainDescriptor, path: str, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        if not descriptor.indexer_url:
            raise UnsupportedConfigurationError(f"No indexer configured for {descriptor.id}")
        body = self.http.post_json(f"{descriptor.indexer_url.rstrip('/')}{path}", payload) or {}
        if body.get("code", 0) != 0:
            # Subscan reports unknown records through a non-zero code
            return None
        return body.get("data")

    def _submit(
        self,
        descriptor: ChainDescriptor,
        signer: Signer,
        call_function: str,
        call_args: Dict[str, Any],
        action: str,
        deploying: bool = False
    ) -> str:
        """
        Sign and submit an extrinsic of the Unique pallet.

        Returns:
            Extrinsic hash
        """
        nonce = self._rpc(descriptor, "system_accountNextIndex", [signer.address])
        genesis_hash = self._rpc(descriptor, "chain_getBlockHash", [0])
        runtime = self._rpc(descriptor, "state_getRuntimeVersion", []) or {}
        payload = {
            "call_module": "Unique",
            "call_function": call_function,
            "call_args": call_args,
            "nonce": nonce,
            "era": "00",
            "tip": 0,
            "genesis_hash": genesis_hash,
            "block_hash": genesis_hash,
            "spec_version": runtime.get("specVersion"),
            "transaction_version": runtime.get("transactionVersion"),
        }

        try:
            signed = signer.sign_transaction(payload)
        except Exception as e:
            self.logger.error(f"Extrinsic signing failed for {action}: {type(e).__name__}")
            raise UnauthorizedError(f"Signer refused to sign {action} extrinsic")

        try:
            tx_hash = self.http.json_rpc(descriptor.rpc_endpoint, "author_submitExtrinsic",
                                         [self.raw_signed(signed)])
        except RpcError as e:
            raise self._translate_rejection(descriptor, action, e, deploying)
        self.logger.info(f"{action} extrinsic submitted on {descriptor.id}: {tx_hash}")
        return tx_hash

    def _await_events(
        self, descriptor: ChainDescriptor, tx_hash: str, what: str, deploying: bool = False
    ) -> Optional[List[Dict[str, Any]]]:
        extrinsic = self.await_indexed(
            lambda: self._subscan(descriptor, "/api/scan/extrinsic", {"hash": tx_hash}), what
        )
        if extrinsic is None:
            return None
        events = extrinsic.get("event") or []
        if not extrinsic.get("success", False):
            reason = ", ".join(
                json.dumps(self._params(event)) for event in events
                if event.get("event_id") == "ExtrinsicFailed"
            )
            raise self._translate_rejection(descriptor, what, f"{tx_hash} failed: {reason}", deploying)
        return events

    @staticmethod
    def _params(event: Dict[str, Any]) -> List[Any]:
        params = event.get("params") or []
        if isinstance(params, str):
            params = json.loads(params)
        return [param.get("value") if isinstance(param, dict) else param for param in params]

    def _event_param(self, events: List[Dict[str, Any]], event_id: str, index: int) -> Any:
        for event in events:
            if event.get("event_id") == event_id:
                params = self._params(event)
                if len(params) > index:
                    return params[index]
        return None

    def _translate_rejection(
        self, descriptor: ChainDescriptor, action: str, error: Any, deploying: bool
    ) -> NftKitError:
        message = str(error)
        lowered = message.lower()
        if (isinstance(error, RpcError) and error.code == _RPC_INVALID_TRANSACTION) or \
                any(marker in lowered for marker in _UNAUTHORIZED_MARKERS):
            return UnauthorizedError(f"{action} rejected by {descriptor.id}: {message}")
        if any(marker in lowered for marker in _NOT_FOUND_MARKERS):
            return NotFoundError(f"{action} target not found on {descriptor.id}: {message}")
        if deploying:
            return DeploymentError(f"Collection creation rejected by {descriptor.id}: {message}")
        return TransactionRevertedError(f"{action} rejected by {descriptor.id}: {message}")

    def _unavailable(self, descriptor: ChainDescriptor, error: Any) -> NetworkUnavailableError:
        rate_limited_log(
            f"Substrate node for {descriptor.id} failed: {error}",
            key=f"substrate:{descriptor.id}",
            logger_instance=self.logger
        )
        return NetworkUnavailableError(f"Substrate node for {descriptor.id} failed: {error}")
