"""
Pytest fixtures for the NFT Kit SDK tests.
"""
import time
import pytest
from unittest.mock import MagicMock

from nftkit_sdk._rate_limited_log import reset_rate_limits
from nftkit_sdk.backends.stub import StubBackend
from nftkit_sdk.config import ClientSettings, NetworkConfig
from nftkit_sdk.dispatcher import NftDispatcher
from nftkit_sdk.models import ChainDescriptor, ChainFamily
from nftkit_sdk.registry import ChainRegistry
from nftkit_sdk.signer import StaticKeyManager
from nftkit_sdk.signer.local import LocalSigner
from nftkit_sdk.storage import IpfsStorage

# Test constants used throughout tests
TEST_RPC_URL = "https://rpc.example.com"
TEST_TEZOS_RPC_URL = "https://tezos-rpc.example.com"
TEST_UNIQUE_RPC_URL = "https://unique-rpc.example.com"
TEST_TZKT_URL = "https://tzkt.example.com"
TEST_SUBSCAN_URL = "https://unique.subscan.example.com"
TEST_ALCHEMY_URL = "https://eth-test.g.alchemy.example.com/nft/v2"
TEST_EXPLORER_URL = "https://explorer.example.com"
TEST_PINNER_URL = "https://pin.example.com"
TEST_GATEWAY_URL = "https://gateway.example.com"

TEST_PRIV_KEY = "0x0123456789abcdef0123456789abcdef0123456789abcdef0123456789abcdef"
TEST_OTHER_PRIV_KEY = "0x1123456789abcdef0123456789abcdef0123456789abcdef0123456789abcdef"
TEST_SIGNER_REF = "vault:minter"
TEST_OTHER_SIGNER_REF = "vault:collector"

TEST_RECIPIENT = "0xABC0000000000000000000000000000000000001"
TEST_CONTRACT = "0x1234567890123456789012345678901234567890"
TEST_OWNER = "0x2345678901234567890123456789012345678901"
TEST_OPERATOR = "0x3456789012345678901234567890123456789012"

TEST_TZ_ADDRESS = "tz1VSUr8wwNhLAzempoch5d6hLRiTh8Cjcjb"
TEST_KT_ADDRESS = "KT1RJ6PbjHpwc3M5rw5s2Nbmefwbuwbdxton"
TEST_SS58_ADDRESS = "5GrwvaEF5zXb26Fz9rcQpDWS57CtERHpNehXCPcNoHGKutQY"

TEST_CID = "QmYwAPJzv5CZsnA625s3Xf2nemtYgPpHdWEz79ojWnPbdG"
TEST_CID_V1 = "bafybeigdyrzt5sfp7udm7hu76uh7y26nf3efuylqabf3oclgtqy55fbzdi"


# Make time.sleep instantaneous so receipt polling doesn't slow the suite down
@pytest.fixture(autouse=True)
def _fast_sleep(monkeypatch):
    monkeypatch.setattr(time, "sleep", lambda *_a, **_kw: None)


@pytest.fixture(autouse=True)
def _fresh_state():
    """Forget rate-limited log keys and cached network files between tests"""
    reset_rate_limits()
    NetworkConfig._networks_cache = None
    yield
    NetworkConfig._networks_cache = None


@pytest.fixture
def settings():
    return ClientSettings(
        timeout=5,
        receipt_timeout=0,
        pinner_url=TEST_PINNER_URL,
        ipfs_gateway=TEST_GATEWAY_URL,
    )


@pytest.fixture
def signer():
    return LocalSigner(TEST_PRIV_KEY)


@pytest.fixture
def other_signer():
    return LocalSigner(TEST_OTHER_PRIV_KEY)


@pytest.fixture
def key_manager(signer, other_signer):
    return StaticKeyManager({
        TEST_SIGNER_REF: signer,
        TEST_OTHER_SIGNER_REF: other_signer,
    })


@pytest.fixture
def mock_signer():
    """Signer double returning fixed signed bytes"""
    mock = MagicMock()
    mock.address = TEST_OWNER
    mock.sign_transaction.return_value = MagicMock(raw_transaction=b"\x02\xf8\x01")
    return mock


@pytest.fixture
def evm_descriptor():
    return ChainDescriptor(
        id="TESTNET",
        family=ChainFamily.EVM,
        rpc=TEST_RPC_URL,
        chainId=1337,
        indexer=TEST_ALCHEMY_URL,
        explorer=TEST_EXPLORER_URL,
    )


@pytest.fixture
def tezos_descriptor():
    return ChainDescriptor(
        id="GHOSTNET",
        family=ChainFamily.TEZOS,
        rpc=TEST_TEZOS_RPC_URL,
        decimals=6,
        indexer=TEST_TZKT_URL,
        explorer="https://ghostnet.tzkt.example.com",
    )


@pytest.fixture
def substrate_descriptor():
    return ChainDescriptor(
        id="OPAL",
        family=ChainFamily.SUBSTRATE,
        rpc=TEST_UNIQUE_RPC_URL,
        indexer=TEST_SUBSCAN_URL,
        explorer="https://opal.subscan.example.com",
    )


@pytest.fixture
def registry(evm_descriptor, tezos_descriptor, substrate_descriptor):
    return ChainRegistry([evm_descriptor, tezos_descriptor, substrate_descriptor])


@pytest.fixture
def stub_backend(key_manager, settings):
    return StubBackend(key_manager, settings=settings)


@pytest.fixture
def storage():
    return IpfsStorage(TEST_PINNER_URL, gateway_url=TEST_GATEWAY_URL, token="test-token", timeout=5)


@pytest.fixture
def dispatcher(registry, key_manager, settings, stub_backend, storage):
    return NftDispatcher(
        registry,
        key_manager,
        settings=settings,
        backends={ChainFamily.EVM: stub_backend},
        storage=storage,
    )


@pytest.fixture
def mock_w3():
    """Mock Web3 instance with a mock ERC-721 contract"""
    w3 = MagicMock()
    contract = MagicMock()
    w3.eth.contract.return_value = contract
    w3.eth.get_transaction_count.return_value = 7
    w3.eth.gas_price = 10**9
    w3.eth.send_raw_transaction.return_value = bytes.fromhex("ab" * 32)
    return w3
