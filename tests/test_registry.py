"""
Tests for the chain registry.
"""
import os
import pytest
from unittest.mock import patch

from nftkit_sdk.config import NetworkConfig
from nftkit_sdk.exceptions import UnknownChainError
from nftkit_sdk.models import ChainDescriptor, ChainFamily, IndexerApi
from nftkit_sdk.registry import ChainRegistry


def test_resolve_is_case_insensitive(registry, evm_descriptor):
    assert registry.resolve("testnet") is evm_descriptor
    assert registry.resolve("TestNet") is evm_descriptor
    assert registry.resolve_family("ghostnet") == ChainFamily.TEZOS


def test_unknown_chain(registry):
    with pytest.raises(UnknownChainError) as exc_info:
        registry.resolve("atlantis")
    assert exc_info.value.chain == "atlantis"

    with pytest.raises(UnknownChainError):
        registry.resolve("")


def test_chains_by_family(registry):
    assert len(registry) == 3
    assert [d.id for d in registry.chains(ChainFamily.SUBSTRATE)] == ["OPAL"]
    assert {d.id for d in registry.chains()} == {"TESTNET", "GHOSTNET", "OPAL"}
    assert "opal" in registry
    assert "atlantis" not in registry
    assert 42 not in registry


def test_duplicate_identifiers_rejected(evm_descriptor):
    clash = evm_descriptor.model_copy(update={"id": "testnet"})
    with pytest.raises(ValueError):
        ChainRegistry([evm_descriptor, clash])


def test_descriptors_are_frozen(evm_descriptor):
    with pytest.raises(Exception):
        evm_descriptor.rpc_endpoint = "https://elsewhere.example.com"


def test_from_config_applies_rpc_override():
    NetworkConfig._networks_cache = {
        "DEVNET": {"family": "EVM", "chainId": 31337, "rpc": "https://dev.example.com"},
        "TEZDEV": {"family": "TEZOS", "rpc": "https://tezdev.example.com", "decimals": 6},
    }

    with patch.dict(os.environ, {"NFTKIT_DEVNET_RPC_URL": "http://localhost:8545"}):
        registry = ChainRegistry.from_config()

    devnet = registry.resolve("devnet")
    assert devnet.rpc_endpoint == "http://localhost:8545"
    assert devnet.chain_id == 31337
    assert devnet.native_unit_decimals == 18
    assert registry.resolve("tezdev").native_unit_decimals == 6


def test_from_config_rejects_malformed_entry():
    NetworkConfig._networks_cache = {"BROKEN": {"family": "COBOL", "rpc": "https://x.example.com"}}

    with pytest.raises(ValueError) as exc_info:
        ChainRegistry.from_config()
    assert "BROKEN" in str(exc_info.value)


def test_bundled_registry():
    registry = ChainRegistry.from_config()

    assert registry.resolve("sepolia").family == ChainFamily.EVM
    assert registry.resolve("ghostnet").indexer_url == "https://api.ghostnet.tzkt.io"
    assert isinstance(registry.resolve("unique"), ChainDescriptor)


@pytest.mark.parametrize("chain", ["astar", "shibuya", "moonbeam", "moonbase"])
def test_polkadot_evm_chains_list_through_subscan(chain):
    descriptor = ChainRegistry.from_config().resolve(chain)

    assert descriptor.family == ChainFamily.EVM
    assert descriptor.indexer_api == IndexerApi.SUBSCAN
    assert descriptor.indexer_url.endswith(".api.subscan.io")


def test_indexer_api_defaults_to_family_reader(evm_descriptor):
    assert evm_descriptor.indexer_api is None
