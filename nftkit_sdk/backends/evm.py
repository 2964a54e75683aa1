"""
EVM chain backend built on web3.py.
"""
import json
import logging
import threading
import importlib.resources
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests
import rlp
from eth_utils import keccak, to_bytes, to_checksum_address, to_hex
from web3 import Web3
from web3.exceptions import BadFunctionCallOutput, ContractLogicError, TimeExhausted, Web3Exception
from web3.logs import DISCARD

from .._rate_limited_log import rate_limited_log
from ..config import ClientSettings
from ..exceptions import (
    DeploymentError, NetworkUnavailableError, NftKitError, NotFoundError,
    TransactionRevertedError, UnauthorizedError, UnsupportedConfigurationError
)
from ..http import HttpClient
from ..models import (
    AccessControl, ChainDescriptor, ChainFamily, EvmNftHolding, IndexerApi, TokenStandard, TransactionStatus
)
from ..operations import ApproveOperation, DeployOperation, MintOperation, TransferOperation
from ..signer import KeyManager, Signer
from ..utils import is_evm_address, to_big_int
from .base import MAX_INDEXER_PAGES, SUBSCAN_PAGE_SIZE, ChainBackend, SubmissionResult

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# Used when gas estimation fails for reasons other than a revert
DEFAULT_GAS = 500000

_UNAUTHORIZED_MARKERS = (
    "caller is not", "not owner", "not token owner", "ownable", "accesscontrol",
    "missing role", "not approved", "insufficientapproval", "incorrectowner",
    "invalidapprover", "invalidoperator", "unauthorized",
)
_NOT_FOUND_MARKERS = ("nonexistent", "invalid token id", "owner query for", "does not exist")

ERC721_ABI = json.loads(
    importlib.resources.files("nftkit_sdk")
    .joinpath("contracts")
    .joinpath("erc721.abi.json")
    .read_text(encoding="utf-8")
)


def contract_address_for(sender: str, nonce: int) -> str:
    """Address of the contract created by ``sender`` at ``nonce`` (CREATE)"""
    encoded = rlp.encode([to_bytes(hexstr=sender), nonce])
    return to_checksum_address(keccak(encoded)[12:])


class EvmBackend(ChainBackend):
    """
    Backend for EVM-compatible chains (ERC-721 collections).

    Deployment bytecode comes from compiled artifacts in
    ``settings.contracts_dir``, one file per ``<STANDARD>_<ACCESS>.json``
    (forge or hardhat output). Calls use the bundled ERC-721 ABI.
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
        web3_factory: Optional[Callable[[ChainDescriptor], Web3]] = None,
        logger: Optional[logging.Logger] = None
    ):
        super().__init__(key_manager, settings, logger)
        self._web3_factory = web3_factory
        self._web3_cache: Dict[str, Web3] = {}
        self._artifacts: Dict[Tuple[TokenStandard, AccessControl], Dict[str, Any]] = {}
        self._lock = threading.RLock()
        self._indexer = HttpClient(timeout=self.settings.timeout)

    @staticmethod
    def is_valid_address(address: str) -> bool:
        return is_evm_address(address)

    @staticmethod
    def is_valid_contract(address: str) -> bool:
        return is_evm_address(address)

    def web3(self, descriptor: ChainDescriptor) -> Web3:
        """Get or create the Web3 instance for a chain"""
        with self._lock:
            w3 = self._web3_cache.get(descriptor.id)
            if w3 is None:
                if self._web3_factory:
                    w3 = self._web3_factory(descriptor)
                else:
                    w3 = Web3(Web3.HTTPProvider(
                        descriptor.rpc_endpoint,
                        request_kwargs={"timeout": self.settings.timeout}
                    ))
                self._web3_cache[descriptor.id] = w3
            return w3

    def contract(self, descriptor: ChainDescriptor, address: str):
        return self.web3(descriptor).eth.contract(address=to_checksum_address(address), abi=ERC721_ABI)

    # --- state-changing -----------------------------------------------

    def deploy(self, descriptor: ChainDescriptor, op: DeployOperation) -> SubmissionResult:
        signer = self.resolve_signer(op.signer_ref)
        artifact = self._artifact(op.token_standard, op.access_control)
        factory = self.web3(descriptor).eth.contract(abi=artifact["abi"], bytecode=artifact["bytecode"])
        try:
            constructor = factory.constructor(
                op.name, op.symbol, op.options.transferable, op.options.burnable
            )
        except (TypeError, ValueError, Web3Exception) as e:
            raise DeploymentError(f"Malformed constructor arguments: {e}")

        tx_id, nonce = self._send(descriptor, signer, constructor, "deploy", deploying=True)
        # CREATE address depends only on sender and nonce
        address = contract_address_for(signer.address, nonce)
        self.logger.info(f"Deployment of {op.symbol} submitted on {descriptor.id}: {address}")
        return SubmissionResult(transaction_id=tx_id, contract_address=address)

    def mint(self, descriptor: ChainDescriptor, op: MintOperation) -> SubmissionResult:
        signer = self.resolve_signer(op.signer_ref)
        contract = self.contract(descriptor, op.contract_address)
        fn = contract.functions.mintTo(to_checksum_address(op.recipient), op.metadata_uri)
        tx_id, _ = self._send(descriptor, signer, fn, "mint")

        receipt = self._wait_for_receipt(descriptor, tx_id)
        if receipt is None:
            return SubmissionResult(transaction_id=tx_id)
        if receipt["status"] == 0:
            raise TransactionRevertedError(f"Mint transaction {tx_id} reverted", transaction_id=tx_id)

        # The minted id is whatever the contract assigned, read from the receipt
        for event in contract.events.Transfer().process_receipt(receipt, errors=DISCARD):
            args = event["args"]
            if args["from"] == ZERO_ADDRESS:
                return SubmissionResult(
                    transaction_id=tx_id,
                    status=TransactionStatus.CONFIRMED,
                    token_id=int(args["tokenId"])
                )
        self.logger.warning(f"Mint {tx_id} confirmed without a Transfer event")
        return SubmissionResult(transaction_id=tx_id, status=TransactionStatus.CONFIRMED)

    def transfer(self, descriptor: ChainDescriptor, op: TransferOperation) -> SubmissionResult:
        signer = self.resolve_signer(op.signer_ref)
        contract = self.contract(descriptor, op.contract_address)
        args = [to_checksum_address(op.from_address), to_checksum_address(op.to_address), op.token_id]
        if op.data is not None:
            fn = contract.get_function_by_signature(
                "safeTransferFrom(address,address,uint256,bytes)")(*args, op.data)
        elif op.safe:
            fn = contract.get_function_by_signature("safeTransferFrom(address,address,uint256)")(*args)
        else:
            fn = contract.functions.transferFrom(*args)
        tx_id, _ = self._send(descriptor, signer, fn, "transfer")
        return SubmissionResult(transaction_id=tx_id)

    def approve(self, descriptor: ChainDescriptor, op: ApproveOperation) -> SubmissionResult:
        signer = self.resolve_signer(op.signer_ref)
        contract = self.contract(descriptor, op.contract_address)
        if op.for_all:
            fn = contract.functions.setApprovalForAll(to_checksum_address(op.operator), op.approved)
        else:
            fn = contract.functions.approve(to_checksum_address(op.to_address), op.token_id)
        tx_id, _ = self._send(descriptor, signer, fn, "approve")
        return SubmissionResult(transaction_id=tx_id)

    def set_token_uri(
        self,
        descriptor: ChainDescriptor,
        contract_address: str,
        token_id: int,
        token_uri: str,
        signer_ref: str
    ) -> SubmissionResult:
        signer = self.resolve_signer(signer_ref)
        fn = self.contract(descriptor, contract_address).functions.setTokenURI(token_id, token_uri)
        tx_id, _ = self._send(descriptor, signer, fn, "setTokenURI")
        return SubmissionResult(transaction_id=tx_id)

    # --- read-only ----------------------------------------------------

    def owner_of(self, descriptor: ChainDescriptor, contract_address: str, token_id: int) -> str:
        owner = self._read(descriptor, contract_address, lambda f: f.ownerOf(token_id), f"Token {token_id}")
        if owner == ZERO_ADDRESS:
            raise NotFoundError(f"Token {token_id} not found on {descriptor.id}")
        return to_checksum_address(owner)

    def balance_of(self, descriptor: ChainDescriptor, contract_address: str, owner: str) -> int:
        return int(self._read(
            descriptor, contract_address,
            lambda f: f.balanceOf(to_checksum_address(owner)), "Balance"
        ))

    def token_uri(self, descriptor: ChainDescriptor, contract_address: str, token_id: int) -> str:
        return self._read(descriptor, contract_address, lambda f: f.tokenURI(token_id), f"Token {token_id}")

    def collection_info(self, descriptor: ChainDescriptor, contract_address: str) -> dict:
        name = self._read(descriptor, contract_address, lambda f: f.name(), "Collection")
        symbol = self._read(descriptor, contract_address, lambda f: f.symbol(), "Collection")
        try:
            total_supply = int(self._read(descriptor, contract_address, lambda f: f.totalSupply(), "Supply"))
        except NotFoundError:
            # totalSupply is optional (ERC721Enumerable)
            total_supply = None
        return {"name": name, "symbol": symbol, "total_supply": total_supply}

    def is_approved_for_all(
        self, descriptor: ChainDescriptor, contract_address: str, owner: str, operator: str
    ) -> bool:
        return bool(self._read(
            descriptor, contract_address,
            lambda f: f.isApprovedForAll(to_checksum_address(owner), to_checksum_address(operator)),
            "Approval"
        ))

    def get_approved(self, descriptor: ChainDescriptor, contract_address: str, token_id: int) -> Optional[str]:
        approved = self._read(descriptor, contract_address, lambda f: f.getApproved(token_id), f"Token {token_id}")
        if not approved or approved == ZERO_ADDRESS:
            return None
        return to_checksum_address(approved)

    def account_nfts(self, descriptor: ChainDescriptor, owner: str) -> List[EvmNftHolding]:
        """
        List NFTs held by ``owner`` through the chain's indexer.

        Chains whose ``indexer_api`` is ``SUBSCAN`` are read from Subscan's
        EVM token listing; every other chain uses the Alchemy NFT API.

        Raises:
            UnsupportedConfigurationError: If the chain has no indexer or Alchemy has no API key
        """
        if not descriptor.indexer_url:
            raise UnsupportedConfigurationError(f"NFT listing needs an indexer for {descriptor.id}")
        if descriptor.indexer_api == IndexerApi.SUBSCAN:
            return self._subscan_nfts(descriptor, owner)
        if not self.settings.indexer_api_key:
            raise UnsupportedConfigurationError(f"NFT listing needs an indexer API key for {descriptor.id}")

        url = f"{descriptor.indexer_url.rstrip('/')}/{self.settings.indexer_api_key}/getNFTs"
        params = {"owner": owner, "withMetadata": "true"}
        holdings: List[EvmNftHolding] = []
        for _ in range(MAX_INDEXER_PAGES):
            page = self._indexer.get_json(url, params=params) or {}
            for item in page.get("ownedNfts", []):
                token = item.get("id", {})
                token_uri = item.get("tokenUri") or {}
                holdings.append(EvmNftHolding(
                    chain=descriptor.id,
                    contract_address=item.get("contract", {}).get("address", ""),
                    token_id=to_big_int(token.get("tokenId", "0"), "tokenId"),
                    token_type=token.get("tokenMetadata", {}).get("tokenType"),
                    balance=to_big_int(item.get("balance", "1"), "balance"),
                    title=item.get("title"),
                    token_uri=token_uri.get("raw") if isinstance(token_uri, dict) else token_uri,
                    metadata=item.get("metadata") or None,
                ))
            page_key = page.get("pageKey")
            if not page_key:
                break
            params = {**params, "pageKey": page_key}
        return holdings

    def tx_url(self, descriptor: ChainDescriptor, transaction_id: str) -> Optional[str]:
        if not descriptor.explorer_url:
            return None
        return f"{descriptor.explorer_url.rstrip('/')}/tx/{transaction_id}"

    # --- internals ----------------------------------------------------

    def _subscan_nfts(self, descriptor: ChainDescriptor, owner: str) -> List[EvmNftHolding]:
        url = f"{descriptor.indexer_url.rstrip('/')}/api/scan/evm/erc721/collectibles"
        holdings: List[EvmNftHolding] = []
        for page in range(MAX_INDEXER_PAGES):
            body = self._indexer.post_json(url, {"address": owner, "row": SUBSCAN_PAGE_SIZE, "page": page}) or {}
            if body.get("code", 0) != 0:
                # Subscan reports an account without records through a non-zero code
                break
            data = body.get("data") or {}
            items = data.get("list") or []
            for item in items:
                holdings.append(EvmNftHolding(
                    chain=descriptor.id,
                    contract_address=item.get("contract", ""),
                    token_id=to_big_int(item.get("token_id", "0"), "tokenId"),
                    token_type="ERC721",
                    title=item.get("symbol"),
                    token_uri=item.get("storage_url") or None,
                ))
            total = data.get("count")
            if len(items) < SUBSCAN_PAGE_SIZE or (total is not None and len(holdings) >= int(total)):
                break
        return holdings

    def _read(self, descriptor: ChainDescriptor, contract_address: str, call, what: str) -> Any:
        try:
            return call(self.contract(descriptor, contract_address).functions).call()
        except ContractLogicError as e:
            raise NotFoundError(f"{what} not found on {descriptor.id}: {e}")
        except BadFunctionCallOutput:
            raise NotFoundError(f"No ERC721 contract at {contract_address} on {descriptor.id}")
        except (requests.RequestException, TimeExhausted, Web3Exception) as e:
            raise self._unavailable(descriptor, e)

    def _send(
        self,
        descriptor: ChainDescriptor,
        signer: Signer,
        fn: Any,
        action: str,
        deploying: bool = False
    ) -> Tuple[str, int]:
        """
        Build, sign and broadcast a contract transaction.

        Returns:
            Tuple of (transaction hash, nonce used)
        """
        w3 = self.web3(descriptor)
        sender = to_checksum_address(signer.address)
        try:
            # Pending count so back-to-back submissions get distinct nonces
            nonce = w3.eth.get_transaction_count(sender, "pending")
            tx_params: Dict[str, Any] = {"from": sender, "nonce": nonce}
            if descriptor.chain_id is not None:
                tx_params["chainId"] = descriptor.chain_id

            try:
                gas = fn.estimate_gas({"from": sender})
                tx_params["gas"] = int(gas * 1.1)
                self.logger.debug(f"Estimated gas for {action}: {tx_params['gas']}")
            except ContractLogicError:
                raise
            except (ValueError, Web3Exception) as e:
                tx_params["gas"] = DEFAULT_GAS
                self.logger.warning(f"Gas estimation failed, using default: {DEFAULT_GAS}. Error: {e}")

            tx_params["gasPrice"] = w3.eth.gas_price
            tx = fn.build_transaction(tx_params)
        except ContractLogicError as e:
            raise self._translate_rejection(descriptor, action, e, deploying)
        except (requests.RequestException, TimeExhausted) as e:
            raise self._unavailable(descriptor, e)
        except (ValueError, Web3Exception) as e:
            raise self._translate_rejection(descriptor, action, e, deploying)

        try:
            signed = signer.sign_transaction(tx)
        except Exception as e:
            self.logger.error(f"Transaction signing failed for {action}: {type(e).__name__}")
            raise UnauthorizedError(f"Signer refused to sign {action} transaction")

        try:
            tx_hash = w3.eth.send_raw_transaction(self.raw_signed(signed))
        except requests.RequestException as e:
            raise self._unavailable(descriptor, e)
        except (ValueError, Web3Exception) as e:
            raise self._translate_rejection(descriptor, action, e, deploying)

        tx_id = tx_hash if isinstance(tx_hash, str) else to_hex(tx_hash)
        self.logger.info(f"{action} transaction sent on {descriptor.id}: {tx_id}")
        return tx_id, nonce

    def _wait_for_receipt(self, descriptor: ChainDescriptor, tx_id: str) -> Optional[Any]:
        try:
            return self.web3(descriptor).eth.wait_for_transaction_receipt(
                tx_id, timeout=self.settings.receipt_timeout
            )
        except TimeExhausted:
            self.logger.warning(f"No receipt for {tx_id} after {self.settings.receipt_timeout}s")
        except requests.RequestException as e:
            # Already broadcast: report the submission instead of failing
            self.logger.warning(f"Receipt lookup for {tx_id} failed: {e}")
        return None

    def _translate_rejection(
        self, descriptor: ChainDescriptor, action: str, error: Exception, deploying: bool
    ) -> NftKitError:
        message = str(error)
        lowered = message.lower()
        if any(marker in lowered for marker in _UNAUTHORIZED_MARKERS):
            return UnauthorizedError(f"{action} rejected by {descriptor.id}: {message}")
        if any(marker in lowered for marker in _NOT_FOUND_MARKERS):
            return NotFoundError(f"{action} target not found on {descriptor.id}: {message}")
        if deploying:
            return DeploymentError(f"Deployment rejected by {descriptor.id}: {message}")
        return TransactionRevertedError(f"{action} rejected by {descriptor.id}: {message}")

    def _unavailable(self, descriptor: ChainDescriptor, error: Exception) -> NetworkUnavailableError:
        rate_limited_log(
            f"RPC endpoint for {descriptor.id} unavailable: {error}",
            key=f"rpc:{descriptor.id}",
            logger_instance=self.logger
        )
        return NetworkUnavailableError(f"RPC endpoint for {descriptor.id} unavailable: {error}")

    def _artifact(self, standard: TokenStandard, access: AccessControl) -> Dict[str, Any]:
        """
        Load the compiled contract for a standard/access-control pair.

        Raises:
            UnsupportedConfigurationError: If no usable artifact is available
        """
        key = (standard, access)
        with self._lock:
            if key in self._artifacts:
                return self._artifacts[key]

        if not self.settings.contracts_dir:
            raise UnsupportedConfigurationError(
                "EVM deployments need NFTKIT_CONTRACTS_DIR pointing at compiled contract artifacts"
            )
        path = Path(self.settings.contracts_dir) / f"{standard.value}_{access.value}.json"
        if not path.exists():
            raise UnsupportedConfigurationError(f"No compiled artifact for {standard.value}/{access.value}")

        with open(path, "r") as f:
            data = json.load(f)
        bytecode = data.get("bytecode")
        if isinstance(bytecode, dict):
            bytecode = bytecode.get("object")
        if not bytecode or not data.get("abi"):
            raise UnsupportedConfigurationError(f"Artifact {path.name} has no abi or bytecode")

        artifact = {"abi": data["abi"], "bytecode": bytecode}
        with self._lock:
            self._artifacts[key] = artifact
        return artifact
