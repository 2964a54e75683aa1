"""
Tests for the envelope module.
"""
import pytest

from nftkit_sdk.backends.base import SubmissionResult
from nftkit_sdk.envelope import (
    account_nfts_response, collection_info_response, deployment_response, error_response,
    minting_response, query_result, transaction_response
)
from nftkit_sdk.exceptions import NotFoundError, UnknownChainError
from nftkit_sdk.models import (
    ChainFamily, EvmNftHolding, SubstrateNftHolding, TokenCollectionInfo, TransactionStatus
)
from nftkit_sdk.operations import QueryKind

from conftest import TEST_CONTRACT, TEST_EXPLORER_URL

TX = "0x" + "ab" * 32


class TestSubmissionEnvelopes:

    def test_deployment(self, stub_backend, evm_descriptor):
        result = SubmissionResult(TX, TransactionStatus.SUBMITTED, contract_address=TEST_CONTRACT)

        response = deployment_response(stub_backend, evm_descriptor, result)

        assert response.transaction_id == TX
        assert response.contract_address == TEST_CONTRACT
        assert response.explorer_url == f"{TEST_EXPLORER_URL}/tx/{TX}"
        assert response.model_dump(by_alias=True)["contractAddress"] == TEST_CONTRACT

    def test_minting_without_token_id(self, stub_backend, evm_descriptor):
        response = minting_response(stub_backend, evm_descriptor, SubmissionResult(TX))

        assert response.token_id is None
        assert response.status == TransactionStatus.SUBMITTED

    def test_transaction_without_explorer(self, stub_backend, evm_descriptor):
        descriptor = evm_descriptor.model_copy(update={"explorer_url": None})

        response = transaction_response(stub_backend, descriptor, SubmissionResult(TX, TransactionStatus.CONFIRMED))

        assert response.explorer_url is None
        assert response.status == TransactionStatus.CONFIRMED


class TestQueryResults:

    def test_balance_is_int(self):
        assert query_result(QueryKind.BALANCE, "0x10") == 16
        assert query_result(QueryKind.BALANCE, 0) == 0

    def test_approval_is_bool(self):
        assert query_result(QueryKind.APPROVAL_STATUS, 1) is True
        assert query_result(QueryKind.APPROVAL_STATUS, None) is False

    def test_collection_info(self):
        info = query_result(QueryKind.COLLECTION_INFO, {"name": "C", "symbol": "S", "total_supply": "12"})
        assert info == TokenCollectionInfo(name="C", symbol="S", total_supply=12)

        assert collection_info_response({"name": "C"}).total_supply is None

    def test_addresses_pass_through(self):
        assert query_result(QueryKind.OWNER, TEST_CONTRACT) == TEST_CONTRACT
        assert query_result(QueryKind.APPROVED, None) is None


class TestAccountNfts:

    def test_unqueried_families_stay_none(self):
        holding = EvmNftHolding(chain="TESTNET", contract_address=TEST_CONTRACT, token_id=1)

        result = account_nfts_response({ChainFamily.EVM: [holding], ChainFamily.SUBSTRATE: []})

        assert result.evm_nfts == [holding]
        assert result.substrate_nfts == []
        assert result.tezos_nfts is None

    def test_aliases(self):
        holding = SubstrateNftHolding(chain="OPAL", collection_id="1", token_id=5)
        dumped = account_nfts_response({ChainFamily.SUBSTRATE: [holding]}).model_dump(by_alias=True)

        assert dumped["substrateNfts"][0]["collectionId"] == "1"
        assert dumped["evmNfts"] is None


@pytest.mark.parametrize("error,code", [
    (UnknownChainError("nowhere"), "UNKNOWN_CHAIN"),
    (NotFoundError("ERC721: invalid token ID"), "NOT_FOUND"),
])
def test_error_response_for_sdk_errors(error, code):
    response = error_response(error)
    assert response.code == code
    assert response.message == error.message


def test_error_response_hides_internal_errors():
    response = error_response(KeyError("secret internals"))
    assert response.code == "INTERNAL_ERROR"
    assert "secret" not in response.message
