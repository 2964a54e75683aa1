"""
Result envelope builder.

Maps raw backend results onto the uniform response models.
"""
from typing import Any, Dict, List, Optional

from .backends.base import ChainBackend, SubmissionResult
from .models import (
    AccountNfts, ChainDescriptor, ChainFamily, DeploymentResponse, ErrorResponse,
    MintingResponse, TokenCollectionInfo, TransactionResponse
)
from .operations import QueryKind
from .utils import to_big_int

_ACCOUNT_NFT_FIELDS = {
    ChainFamily.EVM: "evm_nfts",
    ChainFamily.TEZOS: "tezos_nfts",
    ChainFamily.SUBSTRATE: "substrate_nfts",
}


def deployment_response(
    backend: ChainBackend, descriptor: ChainDescriptor, result: SubmissionResult
) -> DeploymentResponse:
    return DeploymentResponse(
        transaction_id=result.transaction_id,
        contract_address=result.contract_address,
        status=result.status,
        explorer_url=backend.tx_url(descriptor, result.transaction_id),
    )


def minting_response(
    backend: ChainBackend, descriptor: ChainDescriptor, result: SubmissionResult
) -> MintingResponse:
    return MintingResponse(
        transaction_id=result.transaction_id,
        token_id=result.token_id,
        status=result.status,
        explorer_url=backend.tx_url(descriptor, result.transaction_id),
    )


def transaction_response(
    backend: ChainBackend, descriptor: ChainDescriptor, result: SubmissionResult
) -> TransactionResponse:
    return TransactionResponse(
        transaction_id=result.transaction_id,
        status=result.status,
        explorer_url=backend.tx_url(descriptor, result.transaction_id),
    )


def collection_info_response(raw: Dict[str, Any]) -> TokenCollectionInfo:
    total_supply = raw.get("total_supply")
    return TokenCollectionInfo(
        name=raw.get("name"),
        symbol=raw.get("symbol"),
        total_supply=to_big_int(total_supply, "total_supply") if total_supply is not None else None,
    )


def query_result(kind: QueryKind, raw: Any) -> Any:
    """
    Shape a raw query result: balances become ints, approval flags bools,
    collection info a ``TokenCollectionInfo``; addresses and URIs pass through.
    """
    if kind == QueryKind.BALANCE:
        return to_big_int(raw, "balance")
    if kind == QueryKind.APPROVAL_STATUS:
        return bool(raw)
    if kind == QueryKind.COLLECTION_INFO:
        return collection_info_response(raw)
    return raw


def account_nfts_response(holdings: Dict[ChainFamily, List[Any]]) -> AccountNfts:
    """
    Tagged union of per-family holdings. Families that were not queried
    stay None; families queried with no results get an empty list.
    """
    fields: Dict[str, Optional[List[Any]]] = {}
    for family, items in holdings.items():
        fields[_ACCOUNT_NFT_FIELDS[family]] = list(items)
    return AccountNfts(**fields)


def error_response(error: Exception) -> ErrorResponse:
    return ErrorResponse.from_exception(error)
