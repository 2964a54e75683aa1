"""
Tests for the web3-based EVM backend.
"""
import json
import dataclasses
import pytest
import requests
import requests_mock
from unittest.mock import MagicMock

from eth_utils import to_checksum_address
from web3.exceptions import ContractLogicError, TimeExhausted

from nftkit_sdk.backends.base import SUBSCAN_PAGE_SIZE
from nftkit_sdk.backends.evm import DEFAULT_GAS, EvmBackend, contract_address_for
from nftkit_sdk.exceptions import (
    DeploymentError, NetworkUnavailableError, NotFoundError, TransactionRevertedError,
    UnauthorizedError, UnsupportedConfigurationError
)
from nftkit_sdk.models import AccessControl, DeploymentOptions, IndexerApi, TokenStandard, TransactionStatus
from nftkit_sdk.operations import ApproveOperation, DeployOperation, MintOperation, TransferOperation
from nftkit_sdk.signer import StaticKeyManager

from conftest import (
    TEST_ALCHEMY_URL, TEST_CID, TEST_CONTRACT, TEST_OPERATOR, TEST_OWNER, TEST_RECIPIENT, TEST_SUBSCAN_URL,
    TEST_SIGNER_REF
)

TX_HASH = "0x" + "ab" * 32
ZERO = "0x0000000000000000000000000000000000000000"
RECIPIENT = to_checksum_address(TEST_RECIPIENT)


@pytest.fixture
def backend(mock_w3, mock_signer, settings):
    return EvmBackend(
        StaticKeyManager({TEST_SIGNER_REF: mock_signer}),
        settings=settings,
        web3_factory=lambda descriptor: mock_w3,
    )


@pytest.fixture
def contract(mock_w3):
    contract = mock_w3.eth.contract.return_value
    for name in ("mintTo", "transferFrom", "approve", "setApprovalForAll", "setTokenURI"):
        getattr(contract.functions, name).return_value.estimate_gas.return_value = 100000
    return contract


def _mint_op():
    return MintOperation(
        contract_address=TEST_CONTRACT, recipient=TEST_RECIPIENT, storage_type="OFF_CHAIN",
        signer_ref=TEST_SIGNER_REF, metadata_uri=f"ipfs://{TEST_CID}",
    )


def _deploy_op():
    return DeployOperation(
        name="Collection", symbol="COL", token_standard=TokenStandard.ERC721,
        access_control=AccessControl.OWNABLE, options=DeploymentOptions(burnable=False),
        signer_ref=TEST_SIGNER_REF,
    )


def test_contract_address_for():
    assert contract_address_for("0x6ac7ea33f8831ea9dcc53393aaa88b25a785dbf0", 0).lower() == \
        "0xcd234a471b72ba2f1ccf0a70fcaba648a5eecd8d"
    assert contract_address_for("0x6ac7ea33f8831ea9dcc53393aaa88b25a785dbf0", 1).lower() == \
        "0x343c43a37d37dff08ae8c4a11544c718abb4fcf8"


def test_web3_instances_are_cached_per_chain(backend, evm_descriptor):
    assert backend.web3(evm_descriptor) is backend.web3(evm_descriptor)


class TestMint:

    def test_token_id_from_transfer_event(self, backend, evm_descriptor, mock_w3, contract, mock_signer):
        mock_w3.eth.wait_for_transaction_receipt.return_value = {"status": 1}
        contract.events.Transfer.return_value.process_receipt.return_value = [
            {"args": {"from": ZERO, "to": TEST_RECIPIENT, "tokenId": 42}},
        ]

        result = backend.mint(evm_descriptor, _mint_op())

        assert result.transaction_id == TX_HASH
        assert result.token_id == 42
        assert result.status == TransactionStatus.CONFIRMED
        contract.functions.mintTo.assert_called_once_with(RECIPIENT, f"ipfs://{TEST_CID}")

        tx_params = contract.functions.mintTo.return_value.build_transaction.call_args[0][0]
        assert tx_params["nonce"] == 7
        assert tx_params["chainId"] == 1337
        assert tx_params["gas"] == 110000
        assert tx_params["from"] == TEST_OWNER
        mock_w3.eth.get_transaction_count.assert_called_once_with(TEST_OWNER, "pending")
        mock_w3.eth.send_raw_transaction.assert_called_once_with("0x02f801")

    def test_receipt_timeout_returns_submission(self, backend, evm_descriptor, mock_w3, contract):
        mock_w3.eth.wait_for_transaction_receipt.side_effect = TimeExhausted("no receipt")

        result = backend.mint(evm_descriptor, _mint_op())

        assert result.transaction_id == TX_HASH
        assert result.token_id is None
        assert result.status == TransactionStatus.SUBMITTED

    def test_reverted_receipt(self, backend, evm_descriptor, mock_w3, contract):
        mock_w3.eth.wait_for_transaction_receipt.return_value = {"status": 0}

        with pytest.raises(TransactionRevertedError) as exc_info:
            backend.mint(evm_descriptor, _mint_op())
        assert exc_info.value.transaction_id == TX_HASH

    def test_revert_during_estimation_maps_to_unauthorized(self, backend, evm_descriptor, mock_w3, contract):
        contract.functions.mintTo.return_value.estimate_gas.side_effect = ContractLogicError(
            "execution reverted: Ownable: caller is not the owner"
        )

        with pytest.raises(UnauthorizedError):
            backend.mint(evm_descriptor, _mint_op())
        mock_w3.eth.send_raw_transaction.assert_not_called()

    def test_gas_estimation_fallback(self, backend, evm_descriptor, mock_w3, contract):
        contract.functions.mintTo.return_value.estimate_gas.side_effect = ValueError("estimation unavailable")
        mock_w3.eth.wait_for_transaction_receipt.side_effect = TimeExhausted("no receipt")

        backend.mint(evm_descriptor, _mint_op())

        tx_params = contract.functions.mintTo.return_value.build_transaction.call_args[0][0]
        assert tx_params["gas"] == DEFAULT_GAS

    def test_signer_refusal(self, backend, evm_descriptor, mock_w3, contract, mock_signer):
        mock_signer.sign_transaction.side_effect = RuntimeError("HSM locked")

        with pytest.raises(UnauthorizedError):
            backend.mint(evm_descriptor, _mint_op())
        mock_w3.eth.send_raw_transaction.assert_not_called()

    def test_rpc_outage_on_broadcast(self, backend, evm_descriptor, mock_w3, contract):
        mock_w3.eth.send_raw_transaction.side_effect = requests.exceptions.ConnectionError("refused")

        with pytest.raises(NetworkUnavailableError) as exc_info:
            backend.mint(evm_descriptor, _mint_op())
        assert exc_info.value.retryable is True

    def test_unknown_signer(self, backend, evm_descriptor, mock_w3):
        op = dataclasses.replace(_mint_op(), signer_ref="vault:nobody")
        with pytest.raises(UnauthorizedError):
            backend.mint(evm_descriptor, op)
        mock_w3.eth.get_transaction_count.assert_not_called()


class TestTransfersAndApprovals:

    def test_plain_transfer(self, backend, evm_descriptor, contract):
        op = TransferOperation(contract_address=TEST_CONTRACT, from_address=TEST_OWNER,
                               to_address=TEST_RECIPIENT, token_id=1, signer_ref=TEST_SIGNER_REF)

        result = backend.transfer(evm_descriptor, op)

        assert result.status == TransactionStatus.SUBMITTED
        contract.functions.transferFrom.assert_called_once_with(TEST_OWNER, RECIPIENT, 1)

    def test_safe_transfer_with_data(self, backend, evm_descriptor, contract):
        op = TransferOperation(contract_address=TEST_CONTRACT, from_address=TEST_OWNER,
                               to_address=TEST_RECIPIENT, token_id=1, signer_ref=TEST_SIGNER_REF,
                               safe=True, data=b"\x01")

        backend.transfer(evm_descriptor, op)

        contract.get_function_by_signature.assert_called_once_with(
            "safeTransferFrom(address,address,uint256,bytes)")
        contract.get_function_by_signature.return_value.assert_called_once_with(
            TEST_OWNER, RECIPIENT, 1, b"\x01")

    def test_safe_transfer_without_data(self, backend, evm_descriptor, contract):
        op = TransferOperation(contract_address=TEST_CONTRACT, from_address=TEST_OWNER,
                               to_address=TEST_RECIPIENT, token_id=1, signer_ref=TEST_SIGNER_REF, safe=True)

        backend.transfer(evm_descriptor, op)

        contract.get_function_by_signature.assert_called_once_with("safeTransferFrom(address,address,uint256)")

    def test_transfer_of_missing_token(self, backend, evm_descriptor, contract):
        contract.functions.transferFrom.return_value.estimate_gas.side_effect = ContractLogicError(
            "execution reverted: ERC721NonexistentToken(9)"
        )
        op = TransferOperation(contract_address=TEST_CONTRACT, from_address=TEST_OWNER,
                               to_address=TEST_RECIPIENT, token_id=9, signer_ref=TEST_SIGNER_REF)

        with pytest.raises(NotFoundError):
            backend.transfer(evm_descriptor, op)

    def test_approvals(self, backend, evm_descriptor, contract):
        backend.approve(evm_descriptor, ApproveOperation(
            contract_address=TEST_CONTRACT, signer_ref=TEST_SIGNER_REF, token_id=3, to_address=TEST_OPERATOR))
        backend.approve(evm_descriptor, ApproveOperation(
            contract_address=TEST_CONTRACT, signer_ref=TEST_SIGNER_REF, operator=TEST_OPERATOR, approved=False))

        contract.functions.approve.assert_called_once_with(TEST_OPERATOR, 3)
        contract.functions.setApprovalForAll.assert_called_once_with(TEST_OPERATOR, False)

    def test_set_token_uri(self, backend, evm_descriptor, contract):
        result = backend.set_token_uri(evm_descriptor, TEST_CONTRACT, 5, "ipfs://new", TEST_SIGNER_REF)

        assert result.transaction_id == TX_HASH
        contract.functions.setTokenURI.assert_called_once_with(5, "ipfs://new")

    def test_unknown_revert_reason(self, backend, evm_descriptor, contract):
        contract.functions.setTokenURI.return_value.estimate_gas.side_effect = ContractLogicError(
            "execution reverted: paused"
        )
        with pytest.raises(TransactionRevertedError):
            backend.set_token_uri(evm_descriptor, TEST_CONTRACT, 5, "ipfs://new", TEST_SIGNER_REF)


class TestDeploy:

    def test_deploy_needs_artifacts(self, backend, evm_descriptor):
        with pytest.raises(UnsupportedConfigurationError):
            backend.deploy(evm_descriptor, _deploy_op())

    def test_deploy_with_forge_artifact(self, mock_w3, mock_signer, settings, evm_descriptor, tmp_path):
        (tmp_path / "ERC721_OWNABLE.json").write_text(json.dumps({
            "abi": [{"type": "constructor", "inputs": []}],
            "bytecode": {"object": "0x6080"},
        }))
        backend = EvmBackend(
            StaticKeyManager({TEST_SIGNER_REF: mock_signer}),
            settings=dataclasses.replace(settings, contracts_dir=str(tmp_path)),
            web3_factory=lambda descriptor: mock_w3,
        )
        constructor = mock_w3.eth.contract.return_value.constructor
        constructor.return_value.estimate_gas.return_value = 2000000

        result = backend.deploy(evm_descriptor, _deploy_op())

        mock_w3.eth.contract.assert_called_with(abi=[{"type": "constructor", "inputs": []}], bytecode="0x6080")
        constructor.assert_called_once_with("Collection", "COL", True, False)
        assert result.transaction_id == TX_HASH
        assert result.contract_address == contract_address_for(TEST_OWNER, 7)

    def test_rejected_deployment(self, mock_w3, mock_signer, settings, evm_descriptor, tmp_path):
        (tmp_path / "ERC721_OWNABLE.json").write_text(json.dumps({"abi": [{}], "bytecode": "0x6080"}))
        backend = EvmBackend(
            StaticKeyManager({TEST_SIGNER_REF: mock_signer}),
            settings=dataclasses.replace(settings, contracts_dir=str(tmp_path)),
            web3_factory=lambda descriptor: mock_w3,
        )
        mock_w3.eth.send_raw_transaction.side_effect = ValueError({"code": -32000, "message": "insufficient funds"})

        with pytest.raises(DeploymentError):
            backend.deploy(evm_descriptor, _deploy_op())


class TestReads:

    def test_owner_of(self, backend, evm_descriptor, contract):
        contract.functions.ownerOf.return_value.call.return_value = TEST_OWNER.lower()
        assert backend.owner_of(evm_descriptor, TEST_CONTRACT, 1) == TEST_OWNER

    def test_owner_of_missing_token(self, backend, evm_descriptor, contract):
        contract.functions.ownerOf.return_value.call.side_effect = ContractLogicError(
            "execution reverted: ERC721: invalid token ID"
        )
        with pytest.raises(NotFoundError):
            backend.owner_of(evm_descriptor, TEST_CONTRACT, 99)

    def test_read_outage(self, backend, evm_descriptor, contract):
        contract.functions.balanceOf.return_value.call.side_effect = requests.exceptions.ReadTimeout()
        with pytest.raises(NetworkUnavailableError):
            backend.balance_of(evm_descriptor, TEST_CONTRACT, TEST_OWNER)

    def test_zero_balance(self, backend, evm_descriptor, contract):
        contract.functions.balanceOf.return_value.call.return_value = 0
        assert backend.balance_of(evm_descriptor, TEST_CONTRACT, TEST_OWNER) == 0

    def test_collection_info_without_enumerable(self, backend, evm_descriptor, contract):
        contract.functions.name.return_value.call.return_value = "Collection"
        contract.functions.symbol.return_value.call.return_value = "COL"
        contract.functions.totalSupply.return_value.call.side_effect = ContractLogicError("execution reverted")

        assert backend.collection_info(evm_descriptor, TEST_CONTRACT) == {
            "name": "Collection", "symbol": "COL", "total_supply": None,
        }

    def test_get_approved_zero_address(self, backend, evm_descriptor, contract):
        contract.functions.getApproved.return_value.call.return_value = ZERO
        assert backend.get_approved(evm_descriptor, TEST_CONTRACT, 1) is None

    def test_tx_url(self, backend, evm_descriptor):
        assert backend.tx_url(evm_descriptor, TX_HASH).endswith(f"/tx/{TX_HASH}")


class TestAccountNfts:

    def test_needs_api_key(self, backend, evm_descriptor):
        with pytest.raises(UnsupportedConfigurationError):
            backend.account_nfts(evm_descriptor, TEST_OWNER)

    def test_follows_page_keys(self, mock_w3, mock_signer, settings, evm_descriptor):
        backend = EvmBackend(
            StaticKeyManager({TEST_SIGNER_REF: mock_signer}),
            settings=dataclasses.replace(settings, indexer_api_key="alchemy-key"),
            web3_factory=lambda descriptor: mock_w3,
        )
        url = f"{TEST_ALCHEMY_URL}/alchemy-key/getNFTs"

        def nft(token_id):
            return {
                "contract": {"address": TEST_CONTRACT},
                "id": {"tokenId": hex(token_id), "tokenMetadata": {"tokenType": "ERC721"}},
                "balance": "1",
                "title": f"Item {token_id}",
                "tokenUri": {"raw": f"ipfs://{TEST_CID}"},
            }

        with requests_mock.Mocker() as m:
            m.get(url, [
                {"json": {"ownedNfts": [nft(1), nft(2)], "pageKey": "next"},
                 "headers": {"Content-Type": "application/json"}},
                {"json": {"ownedNfts": [nft(255)]}, "headers": {"Content-Type": "application/json"}},
            ])
            holdings = backend.account_nfts(evm_descriptor, TEST_OWNER)

            assert m.call_count == 2
            assert m.request_history[1].qs["pagekey"] == ["next"]

        assert [h.token_id for h in holdings] == [1, 2, 255]
        assert holdings[0].token_type == "ERC721"
        assert holdings[2].token_uri == f"ipfs://{TEST_CID}"


class TestSubscanAccountNfts:

    URL = f"{TEST_SUBSCAN_URL}/api/scan/evm/erc721/collectibles"

    @pytest.fixture
    def subscan_descriptor(self, evm_descriptor):
        return evm_descriptor.model_copy(update={
            "id": "SHIBUYA", "indexer_url": TEST_SUBSCAN_URL, "indexer_api": IndexerApi.SUBSCAN,
        })

    def test_reads_every_page_without_api_key(self, backend, subscan_descriptor):
        total = SUBSCAN_PAGE_SIZE + 3

        def collectibles(request, context):
            page = request.json()["page"]
            rows = SUBSCAN_PAGE_SIZE if page == 0 else 3
            return {"code": 0, "data": {"count": total, "list": [
                {"contract": TEST_CONTRACT, "token_id": str(page * SUBSCAN_PAGE_SIZE + i),
                 "symbol": "SHB", "storage_url": f"ipfs://{TEST_CID}/{i}.json"}
                for i in range(rows)
            ]}}

        with requests_mock.Mocker() as m:
            m.post(self.URL, json=collectibles)
            holdings = backend.account_nfts(subscan_descriptor, TEST_OWNER)

            assert [r.json()["page"] for r in m.request_history] == [0, 1]
            assert m.request_history[0].json()["address"] == TEST_OWNER
            assert m.request_history[0].json()["row"] == SUBSCAN_PAGE_SIZE

        assert len(holdings) == total
        assert holdings[-1].token_id == SUBSCAN_PAGE_SIZE + 2
        assert holdings[0].chain == "SHIBUYA"
        assert holdings[0].contract_address == TEST_CONTRACT
        assert holdings[0].token_uri == f"ipfs://{TEST_CID}/0.json"

    def test_account_without_records(self, backend, subscan_descriptor):
        with requests_mock.Mocker() as m:
            m.post(self.URL, json={"code": 10004, "message": "Record Not Found", "data": None})
            assert backend.account_nfts(subscan_descriptor, TEST_OWNER) == []
            assert m.call_count == 1

    def test_alchemy_key_is_not_sent(self, mock_w3, mock_signer, settings, subscan_descriptor):
        backend = EvmBackend(
            StaticKeyManager({TEST_SIGNER_REF: mock_signer}),
            settings=dataclasses.replace(settings, indexer_api_key="alchemy-key"),
            web3_factory=lambda descriptor: mock_w3,
        )

        with requests_mock.Mocker() as m:
            m.post(self.URL, json={"code": 0, "data": {"count": 0, "list": []}})
            assert backend.account_nfts(subscan_descriptor, TEST_OWNER) == []
            assert "alchemy-key" not in m.last_request.url

    def test_needs_indexer(self, backend, subscan_descriptor):
        descriptor = subscan_descriptor.model_copy(update={"indexer_url": None})
        with pytest.raises(UnsupportedConfigurationError):
            backend.account_nfts(descriptor, TEST_OWNER)
