"""
Network and client configuration for the NFT Kit SDK.
"""
import os
import json
import logging
import importlib.resources
from dataclasses import dataclass
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30
DEFAULT_RECEIPT_TIMEOUT = 120
DEFAULT_PINNER_URL = "https://api.nft.storage"
DEFAULT_IPFS_GATEWAY = "https://ipfs.io"


def _env_key(network: str) -> str:
    return network.upper().replace("-", "_")


class NetworkConfig:
    """
    Access to the bundled chain registry data (``networks.json``).

    The file can be replaced wholesale with ``NFTKIT_NETWORKS_FILE``; single
    RPC endpoints can be overridden with ``NFTKIT_<CHAIN>_RPC_URL``.
    """

    _networks_cache: Optional[Dict[str, Dict[str, Any]]] = None

    @classmethod
    def load_networks(cls) -> Dict[str, Dict[str, Any]]:
        """
        Load all network definitions.

        Returns:
            Mapping of chain identifier to raw network configuration
        """
        if cls._networks_cache is not None:
            return cls._networks_cache

        custom_path = os.environ.get("NFTKIT_NETWORKS_FILE")
        if custom_path:
            logger.info(f"Loading networks from {custom_path}")
            with open(custom_path, "r") as f:
                networks = json.load(f)
        else:
            resource = importlib.resources.files("nftkit_sdk").joinpath("networks.json")
            networks = json.loads(resource.read_text(encoding="utf-8"))

        cls._networks_cache = networks
        return networks

    @classmethod
    def get_network(cls, network: str) -> Dict[str, Any]:
        """
        Get the raw configuration of one network.

        Raises:
            ValueError: If the network is not defined
        """
        networks = cls.load_networks()
        if network not in networks:
            available = ", ".join(sorted(networks.keys()))
            raise ValueError(f"Network '{network}' not found. Available networks: {available}")
        return networks[network]

    @classmethod
    def get_rpc_url(cls, network: str, override: Optional[str] = None) -> str:
        """
        Resolve the RPC endpoint: explicit override, then environment, then file.
        """
        if override:
            return override
        env_value = os.environ.get(f"NFTKIT_{_env_key(network)}_RPC_URL")
        if env_value:
            return env_value
        return cls.get_network(network)["rpc"]

    @classmethod
    def get_chain_id(cls, network: str) -> Optional[int]:
        return cls.get_network(network).get("chainId")


@dataclass(frozen=True)
class ClientSettings:
    """
    Runtime settings shared by the dispatcher, backends and storage client.
    """
    timeout: int = DEFAULT_TIMEOUT
    receipt_timeout: int = DEFAULT_RECEIPT_TIMEOUT
    pinner_url: str = DEFAULT_PINNER_URL
    pinner_token: Optional[str] = None
    ipfs_gateway: str = DEFAULT_IPFS_GATEWAY
    contracts_dir: Optional[str] = None
    default_signer_ref: Optional[str] = None
    indexer_api_key: Optional[str] = None

    @classmethod
    def from_env(cls) -> "ClientSettings":
        """
        Build settings from ``NFTKIT_*`` environment variables.

        Raises:
            ValueError: If a numeric variable cannot be parsed
        """
        def _int(name: str, default: int) -> int:
            raw = os.environ.get(name)
            if raw is None or raw == "":
                return default
            try:
                return int(raw)
            except ValueError:
                raise ValueError(f"{name} must be an integer (got: {raw!r})")

        return cls(
            timeout=_int("NFTKIT_TIMEOUT", DEFAULT_TIMEOUT),
            receipt_timeout=_int("NFTKIT_RECEIPT_TIMEOUT", DEFAULT_RECEIPT_TIMEOUT),
            pinner_url=os.environ.get("NFTKIT_PINNER_URL", DEFAULT_PINNER_URL),
            pinner_token=os.environ.get("NFTKIT_PINNER_TOKEN"),
            ipfs_gateway=os.environ.get("NFTKIT_IPFS_GATEWAY", DEFAULT_IPFS_GATEWAY),
            contracts_dir=os.environ.get("NFTKIT_CONTRACTS_DIR"),
            default_signer_ref=os.environ.get("NFTKIT_DEFAULT_SIGNER"),
            indexer_api_key=os.environ.get("NFTKIT_INDEXER_API_KEY"),
        )
