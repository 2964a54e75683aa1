"""
Tezos backend for FA2 collections.

Reads go through a TzKT indexer. Writes are forged by the node
(``helpers/forge/operations``), signed by the resolved signer and injected
with ``/injection/operation``; confirmation is read back from TzKT.
"""
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import requests

from .._rate_limited_log import rate_limited_log
from ..config import ClientSettings
from ..exceptions import (
    DeploymentError, NetworkUnavailableError, NftKitError, NotFoundError,
    TransactionRevertedError, UnauthorizedError, UnsupportedConfigurationError
)
from ..http import HttpClient
from ..models import (
    AccessControl, ChainDescriptor, ChainFamily, TezosNftHolding, TokenStandard, TransactionStatus
)
from ..operations import ApproveOperation, DeployOperation, MintOperation, TransferOperation
from ..signer import KeyManager, Signer
from ..utils import is_tezos_address, to_big_int
from .base import MAX_INDEXER_PAGES, ChainBackend, SubmissionResult

# Flat limits; the node rejects operations that exceed them
TRANSACTION_LIMITS = {"fee": "10000", "gas_limit": "100000", "storage_limit": "1000"}
ORIGINATION_LIMITS = {"fee": "100000", "gas_limit": "500000", "storage_limit": "60000"}

# TzKT caps list responses at 10000 rows
TZKT_PAGE_SIZE = 1000

_UNAUTHORIZED_MARKERS = (
    "not_operator", "not_owner", "not_admin", "not an admin", "unauthorized",
    "invalid_signature", "unrevealed_key", "fa2_insufficient_balance",
)
_NOT_FOUND_MARKERS = ("token_undefined", "invalid_contract", "non_existing_contract")


def _string(value: str) -> Dict[str, str]:
    return {"string": value}


def _int(value: int) -> Dict[str, str]:
    return {"int": str(value)}


def _bytes(value: str) -> Dict[str, str]:
    return {"bytes": value.encode("utf-8").hex()}


def _pair(left: Any, right: Any) -> Dict[str, Any]:
    return {"prim": "Pair", "args": [left, right]}


class TezosBackend(ChainBackend):
    """
    Backend for Tezos FA2 contracts.

    Signers for this family receive ``{"branch", "contents", "forged"}`` and
    return the forged bytes with the signature appended as
    ``raw_transaction`` (hex).
    """

    family = ChainFamily.TEZOS
    SUPPORTED_DEPLOYMENTS = frozenset({(TokenStandard.FA2, AccessControl.OWNABLE)})

    def __init__(
        self,
        key_manager: KeyManager,
        settings: Optional[ClientSettings] = None,
        http: Optional[HttpClient] = None,
        logger: Optional[logging.Logger] = None
    ):
        super().__init__(key_manager, settings, logger)
        self.http = http or HttpClient(timeout=self.settings.timeout)

    @staticmethod
    def is_valid_address(address: str) -> bool:
        return is_tezos_address(address)

    @staticmethod
    def is_valid_contract(address: str) -> bool:
        return is_tezos_address(address) and address.startswith("KT1")

    # --- state-changing -----------------------------------------------

    def deploy(self, descriptor: ChainDescriptor, op: DeployOperation) -> SubmissionResult:
        signer = self.resolve_signer(op.signer_ref)
        script = self._origination_script(op, signer.address)
        content = {"kind": "origination", "balance": "0", "script": script, **ORIGINATION_LIMITS}
        op_hash = self._submit(descriptor, signer, content, "deploy", deploying=True)

        operations = self.await_indexed(lambda: self._operations(descriptor, op_hash), "Origination")
        if operations is None:
            return SubmissionResult(transaction_id=op_hash)
        self._check_applied(descriptor, operations, op_hash, "deploy", deploying=True)
        for item in operations:
            originated = item.get("originatedContract") or {}
            if originated.get("address"):
                return SubmissionResult(
                    transaction_id=op_hash,
                    status=TransactionStatus.CONFIRMED,
                    contract_address=originated["address"]
                )
        raise DeploymentError(f"Origination {op_hash} did not create a contract")

    def mint(self, descriptor: ChainDescriptor, op: MintOperation) -> SubmissionResult:
        signer = self.resolve_signer(op.signer_ref)
        value = _pair(_string(op.recipient), _bytes(op.metadata_uri))
        op_hash = self._call(descriptor, signer, op.contract_address, "mint", value)

        operations = self.await_indexed(lambda: self._operations(descriptor, op_hash), "Mint")
        if operations is None:
            return SubmissionResult(transaction_id=op_hash)
        self._check_applied(descriptor, operations, op_hash, "mint")

        # The indexer attributes token transfers to the transaction row id
        row_id = operations[0].get("id")
        transfers = self.http.get_json(
            f"{self._indexer(descriptor)}/v1/tokens/transfers",
            params={"transactionId": row_id}
        ) or []
        for transfer in transfers:
            if not transfer.get("from"):
                return SubmissionResult(
                    transaction_id=op_hash,
                    status=TransactionStatus.CONFIRMED,
                    token_id=to_big_int(transfer["token"]["tokenId"], "tokenId")
                )
        self.logger.warning(f"Mint {op_hash} applied without an indexed token transfer")
        return SubmissionResult(transaction_id=op_hash, status=TransactionStatus.CONFIRMED)

    def transfer(self, descriptor: ChainDescriptor, op: TransferOperation) -> SubmissionResult:
        if op.data is not None:
            raise UnsupportedConfigurationError("FA2 transfers do not carry a data payload")
        signer = self.resolve_signer(op.signer_ref)
        txs = [_pair(_string(op.to_address), _pair(_int(op.token_id), _int(1)))]
        value = [_pair(_string(op.from_address), txs)]
        op_hash = self._call(descriptor, signer, op.contract_address, "transfer", value)
        return SubmissionResult(transaction_id=op_hash)

    def approve(self, descriptor: ChainDescriptor, op: ApproveOperation) -> SubmissionResult:
        if op.for_all:
            raise UnsupportedConfigurationError("FA2 operators are granted per token on Tezos")
        signer = self.resolve_signer(op.signer_ref)
        update = _pair(_string(signer.address), _pair(_string(op.to_address), _int(op.token_id)))
        prim = "Left" if op.approved else "Right"
        value = [{"prim": prim, "args": [update]}]
        op_hash = self._call(descriptor, signer, op.contract_address, "update_operators", value)
        return SubmissionResult(transaction_id=op_hash)

    def set_token_uri(
        self,
        descriptor: ChainDescriptor,
        contract_address: str,
        token_id: int,
        token_uri: str,
        signer_ref: str
    ) -> SubmissionResult:
        signer = self.resolve_signer(signer_ref)
        value = _pair(_int(token_id), _bytes(token_uri))
        op_hash = self._call(descriptor, signer, contract_address, "set_token_metadata", value)
        return SubmissionResult(transaction_id=op_hash)

    # --- read-only ----------------------------------------------------

    def owner_of(self, descriptor: ChainDescriptor, contract_address: str, token_id: int) -> str:
        balances = self.http.get_json(
            f"{self._indexer(descriptor)}/v1/tokens/balances",
            params={
                "token.contract": contract_address,
                "token.tokenId": str(token_id),
                "balance.gt": 0,
                "limit": 1,
            }
        ) or []
        if not balances:
            raise NotFoundError(f"Token {token_id} not found in {contract_address}")
        return balances[0]["account"]["address"]

    def balance_of(self, descriptor: ChainDescriptor, contract_address: str, owner: str) -> int:
        self._contract_info(descriptor, contract_address)
        count = self.http.get_json(
            f"{self._indexer(descriptor)}/v1/tokens/balances/count",
            params={"account": owner, "token.contract": contract_address, "balance.gt": 0}
        )
        return int(count or 0)

    def token_uri(self, descriptor: ChainDescriptor, contract_address: str, token_id: int) -> str:
        entry = self.http.get_json(
            f"{self._indexer(descriptor)}/v1/contracts/{contract_address}"
            f"/bigmaps/token_metadata/keys/{token_id}"
        )
        if not entry:
            raise NotFoundError(f"Token {token_id} not found in {contract_address}")
        token_info = (entry.get("value") or {}).get("token_info") or {}
        raw = token_info.get("")
        if raw is None:
            raise NotFoundError(f"Token {token_id} has no metadata URI")
        return bytes.fromhex(raw).decode("utf-8")

    def collection_info(self, descriptor: ChainDescriptor, contract_address: str) -> dict:
        contract = self._contract_info(descriptor, contract_address)
        metadata = contract.get("metadata") or {}
        total = self.http.get_json(
            f"{self._indexer(descriptor)}/v1/tokens/count",
            params={"contract": contract_address}
        )
        return {
            "name": metadata.get("name") or contract.get("alias"),
            "symbol": metadata.get("symbol"),
            "total_supply": int(total) if total is not None else None,
        }

    def is_approved_for_all(
        self, descriptor: ChainDescriptor, contract_address: str, owner: str, operator: str
    ) -> bool:
        raise UnsupportedConfigurationError("FA2 operators are granted per token on Tezos")

    def get_approved(self, descriptor: ChainDescriptor, contract_address: str, token_id: int) -> Optional[str]:
        keys = self.http.get_json(
            f"{self._indexer(descriptor)}/v1/contracts/{contract_address}/bigmaps/operators/keys",
            params={"active": "true", "key.token_id": str(token_id), "limit": 1}
        ) or []
        if not keys:
            return None
        return (keys[0].get("key") or {}).get("operator")

    def account_nfts(self, descriptor: ChainDescriptor, owner: str) -> List[TezosNftHolding]:
        url = f"{self._indexer(descriptor)}/v1/tokens/balances"
        holdings = []
        for page_number in range(MAX_INDEXER_PAGES):
            balances = self.http.get_json(url, params={
                "account": owner,
                "token.standard": "fa2",
                "balance.gt": 0,
                "sort.asc": "id",
                "limit": TZKT_PAGE_SIZE,
                "offset": page_number * TZKT_PAGE_SIZE,
            }) or []
            for item in balances:
                token = item.get("token") or {}
                holdings.append(TezosNftHolding(
                    chain=descriptor.id,
                    contract_address=(token.get("contract") or {}).get("address", ""),
                    token_id=to_big_int(token.get("tokenId", "0"), "tokenId"),
                    balance=to_big_int(item.get("balance", "1"), "balance"),
                    standard=token.get("standard"),
                    metadata=token.get("metadata"),
                ))
            # A short page is the last one
            if len(balances) < TZKT_PAGE_SIZE:
                break
        return holdings

    def tx_url(self, descriptor: ChainDescriptor, transaction_id: str) -> Optional[str]:
        if not descriptor.explorer_url:
            return None
        return f"{descriptor.explorer_url.rstrip('/')}/{transaction_id}"

    # --- internals ----------------------------------------------------

    def _indexer(self, descriptor: ChainDescriptor) -> str:
        if not descriptor.indexer_url:
            raise UnsupportedConfigurationError(f"No indexer configured for {descriptor.id}")
        return descriptor.indexer_url.rstrip("/")

    def _contract_info(self, descriptor: ChainDescriptor, contract_address: str) -> Dict[str, Any]:
        # TzKT answers 204 with an empty body for unknown contracts
        contract = self.http.get_json(f"{self._indexer(descriptor)}/v1/contracts/{contract_address}")
        if not contract:
            raise NotFoundError(f"Contract {contract_address} not found on {descriptor.id}")
        return contract

    def _operations(self, descriptor: ChainDescriptor, op_hash: str) -> Optional[List[Dict[str, Any]]]:
        operations = self.http.get_json(f"{self._indexer(descriptor)}/v1/operations/{op_hash}")
        return operations or None

    def _check_applied(
        self,
        descriptor: ChainDescriptor,
        operations: List[Dict[str, Any]],
        op_hash: str,
        action: str,
        deploying: bool = False
    ) -> None:
        failed = [item for item in operations if item.get("status") != "applied"]
        if not failed:
            return
        errors = [err.get("type", "") for item in failed for err in (item.get("errors") or [])]
        raise self._translate_rejection(descriptor, action, f"{op_hash}: {', '.join(errors)}", deploying)

    def _call(
        self,
        descriptor: ChainDescriptor,
        signer: Signer,
        contract_address: str,
        entrypoint: str,
        value: Any
    ) -> str:
        content = {
            "kind": "transaction",
            "amount": "0",
            "destination": contract_address,
            "parameters": {"entrypoint": entrypoint, "value": value},
            **TRANSACTION_LIMITS,
        }
        return self._submit(descriptor, signer, content, entrypoint)

    def _submit(
        self,
        descriptor: ChainDescriptor,
        signer: Signer,
        content: Dict[str, Any],
        action: str,
        deploying: bool = False
    ) -> str:
        """
        Forge, sign and inject a single-content operation.

        Returns:
            Operation hash
        """
        rpc = descriptor.rpc_endpoint.rstrip("/")
        head = f"{rpc}/chains/main/blocks/head"
        counter = self.http.get_json(f"{head}/context/contracts/{signer.address}/counter")
        branch = self.http.get_json(f"{head}/hash")

        contents = [{**content, "source": signer.address, "counter": str(int(counter) + 1)}]
        forged = self._node_post(descriptor, f"{head}/helpers/forge/operations",
                                 {"branch": branch, "contents": contents}, action, deploying)

        try:
            signed = signer.sign_transaction({"branch": branch, "contents": contents, "forged": forged})
        except Exception as e:
            self.logger.error(f"Operation signing failed for {action}: {type(e).__name__}")
            raise UnauthorizedError(f"Signer refused to sign {action} operation")

        raw = self.raw_signed(signed)[2:]
        op_hash = self._node_post(descriptor, f"{rpc}/injection/operation", raw, action, deploying)
        self.logger.info(f"{action} operation injected on {descriptor.id}: {op_hash}")
        return op_hash

    def _node_post(
        self, descriptor: ChainDescriptor, url: str, payload: Any, action: str, deploying: bool
    ) -> Any:
        # The node reports rejected operations as HTTP 500 with a list of errors
        try:
            response = self.http.session.post(url, json=payload, timeout=self.http.timeout)
        except requests.RequestException as e:
            raise self._unavailable(descriptor, e)
        if response.status_code == 200:
            return response.json()
        try:
            body = response.json()
        except ValueError:
            body = None
        if response.status_code in (400, 500) and isinstance(body, list):
            # Error ids plus any FAILWITH payload, e.g. FA2_NOT_OPERATOR
            raise self._translate_rejection(descriptor, action, json.dumps(body), deploying)
        raise self._unavailable(descriptor, f"HTTP {response.status_code}")

    def _translate_rejection(
        self, descriptor: ChainDescriptor, action: str, message: str, deploying: bool
    ) -> NftKitError:
        lowered = message.lower()
        if any(marker in lowered for marker in _UNAUTHORIZED_MARKERS):
            return UnauthorizedError(f"{action} rejected by {descriptor.id}: {message}")
        if any(marker in lowered for marker in _NOT_FOUND_MARKERS):
            return NotFoundError(f"{action} target not found on {descriptor.id}: {message}")
        if deploying:
            return DeploymentError(f"Origination rejected by {descriptor.id}: {message}")
        return TransactionRevertedError(f"{action} rejected by {descriptor.id}: {message}")

    def _unavailable(self, descriptor: ChainDescriptor, error: Any) -> NetworkUnavailableError:
        rate_limited_log(
            f"Tezos node for {descriptor.id} unavailable: {error}",
            key=f"tezos:{descriptor.id}",
            logger_instance=self.logger
        )
        return NetworkUnavailableError(f"Tezos node for {descriptor.id} unavailable: {error}")

    def _origination_script(self, op: DeployOperation, admin: str) -> Dict[str, Any]:
        """
        Build the origination script from ``<contracts_dir>/FA2_OWNABLE.json``.

        The artifact holds ``code`` (Micheline) and a ``storage`` template with
        ``{{admin}}``, ``{{name}}`` and ``{{symbol}}`` placeholders.
        """
        if not self.settings.contracts_dir:
            raise UnsupportedConfigurationError(
                "Tezos originations need NFTKIT_CONTRACTS_DIR pointing at the FA2 contract"
            )
        path = Path(self.settings.contracts_dir) / f"{op.token_standard.value}_{op.access_control.value}.json"
        if not path.exists():
            raise UnsupportedConfigurationError(f"No contract artifact for {path.stem}")
        with open(path, "r") as f:
            artifact = json.load(f)
        if "code" not in artifact or "storage" not in artifact:
            raise UnsupportedConfigurationError(f"Artifact {path.name} has no code or storage")

        template = artifact["storage"]
        if not isinstance(template, str):
            template = json.dumps(template)
        substitutions = {
            "{{admin}}": admin,
            "{{name}}": json.dumps(op.name)[1:-1],
            "{{symbol}}": json.dumps(op.symbol)[1:-1],
            "{{name_bytes}}": op.name.encode("utf-8").hex(),
            "{{symbol_bytes}}": op.symbol.encode("utf-8").hex(),
        }
        for placeholder, value in substitutions.items():
            template = template.replace(placeholder, value)
        try:
            storage = json.loads(template)
        except ValueError as e:
            raise DeploymentError(f"Malformed initial storage for {op.symbol}: {e}")
        return {"code": artifact["code"], "storage": storage}
