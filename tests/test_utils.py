"""
Tests for utility functions.
"""
import pytest

from nftkit_sdk.utils import (
    decode_data_uri, encode_data_uri, extract_cid, ipfs_path, is_evm_address, is_ss58_address,
    is_tezos_address, is_valid_cid, sha256_hex, to_big_int
)

from conftest import (
    TEST_CID, TEST_CID_V1, TEST_CONTRACT, TEST_KT_ADDRESS, TEST_SS58_ADDRESS, TEST_TZ_ADDRESS
)


def test_sha256_hex():
    """Test SHA-256 hash calculation"""
    expected = "9f86d081884c7d659a2feaa0c55ad015a3bf4f1b2b0b822cd15d6c15b0f00a08"
    assert sha256_hex("test") == expected
    assert sha256_hex(b"test") == expected


@pytest.mark.parametrize("value,expected", [
    (0, 0),
    ("42", 42),
    (" 42 ", 42),
    ("0x2a", 42),
    ("0X2A", 42),
    (42.0, 42),
    ("115792089237316195423570985008687907853269984665640564039457584007913129639935", 2**256 - 1),
])
def test_to_big_int(value, expected):
    assert to_big_int(value) == expected


@pytest.mark.parametrize("value", [-1, "-5", "abc", "0xzz", 1.5, True, None, [1]])
def test_to_big_int_rejects(value):
    with pytest.raises(ValueError):
        to_big_int(value, "token_id")


def test_to_big_int_names_the_field():
    with pytest.raises(ValueError) as exc_info:
        to_big_int("seven", "token_id")
    assert "token_id" in str(exc_info.value)


class TestCid:

    def test_valid_cids(self):
        assert is_valid_cid(TEST_CID)
        assert is_valid_cid(TEST_CID_V1)

    @pytest.mark.parametrize("value", ["", "Qm123", "QmYwAPJzv5CZsnA625s3Xf2nemtYgPpHdWEz79ojWnPbd0",
                                       "not-a-cid", None])
    def test_invalid_cids(self, value):
        assert not is_valid_cid(value)

    @pytest.mark.parametrize("uri", [
        f"ipfs://{TEST_CID}",
        f"ipfs://{TEST_CID}/metadata.json",
        f"ipfs://ipfs/{TEST_CID}",
        f"https://ipfs.io/ipfs/{TEST_CID}",
        f"https://gateway.example.com/ipfs/{TEST_CID}/1.json",
        TEST_CID,
    ])
    def test_extract_cid(self, uri):
        assert extract_cid(uri) == TEST_CID

    @pytest.mark.parametrize("uri", [
        "https://example.com/metadata/1.json",
        "ipfs://not-a-cid",
        "data:application/json;base64,e30=",
        None,
    ])
    def test_extract_cid_none(self, uri):
        assert extract_cid(uri) is None

    @pytest.mark.parametrize("uri,expected", [
        (f"ipfs://{TEST_CID}", TEST_CID),
        (f"ipfs://{TEST_CID}/", TEST_CID),
        (f"ipfs://{TEST_CID}/7.json", f"{TEST_CID}/7.json"),
        (f"ipfs://ipfs/{TEST_CID}/meta/7.json", f"{TEST_CID}/meta/7.json"),
        (f"https://ipfs.io/ipfs/{TEST_CID}/1.json", f"{TEST_CID}/1.json"),
        ("https://example.com/metadata/1.json", None),
        ("ipfs://not-a-cid/1.json", None),
    ])
    def test_ipfs_path_keeps_directory_path(self, uri, expected):
        assert ipfs_path(uri) == expected


class TestDataUri:

    def test_round_trip_keeps_key_order(self):
        document = {"name": "Item1", "description": "é", "attributes": [{"trait_type": "A", "value": "1"}]}
        uri = encode_data_uri(document)

        assert uri.startswith("data:application/json;base64,")
        assert list(decode_data_uri(uri)) == ["name", "description", "attributes"]
        assert decode_data_uri(uri) == document

    def test_rejects_other_media_types(self):
        with pytest.raises(ValueError):
            decode_data_uri("data:text/plain;base64,aGk=")


class TestAddressFormats:

    def test_evm(self):
        assert is_evm_address(TEST_CONTRACT)
        assert not is_evm_address("0x1234")
        assert not is_evm_address(TEST_TZ_ADDRESS)
        assert not is_evm_address(None)

    def test_tezos(self):
        assert is_tezos_address(TEST_TZ_ADDRESS)
        assert is_tezos_address(TEST_KT_ADDRESS)
        # Broken checksum
        assert not is_tezos_address(TEST_TZ_ADDRESS[:-1] + "a")
        assert not is_tezos_address(TEST_CONTRACT)

    def test_ss58(self):
        assert is_ss58_address(TEST_SS58_ADDRESS)
        assert not is_ss58_address(TEST_TZ_ADDRESS)
        assert not is_ss58_address("0" * 48)
        assert not is_ss58_address(TEST_CONTRACT)
