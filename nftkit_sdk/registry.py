"""
Chain registry: maps chain identifiers to immutable chain descriptors.
"""
import logging
from types import MappingProxyType
from typing import Dict, Iterable, List, Optional

from pydantic import ValidationError

from .config import NetworkConfig
from .exceptions import UnknownChainError
from .models import ChainDescriptor, ChainFamily

logger = logging.getLogger(__name__)


class ChainRegistry:
    """
    Read-only lookup of registered chains.

    Identifiers match case-insensitively. The registry is never mutated after
    construction, so concurrent readers need no locking.
    """

    def __init__(self, descriptors: Iterable[ChainDescriptor]):
        table: Dict[str, ChainDescriptor] = {}
        for descriptor in descriptors:
            key = descriptor.id.upper()
            if key in table:
                raise ValueError(f"Duplicate chain identifier: {descriptor.id}")
            table[key] = descriptor
        self._chains = MappingProxyType(table)

    @classmethod
    def from_config(cls) -> "ChainRegistry":
        """
        Build the registry from ``NetworkConfig``, applying RPC overrides.

        Raises:
            ValueError: If a network entry is malformed
        """
        descriptors = []
        for name, raw in NetworkConfig.load_networks().items():
            entry = dict(raw)
            entry["rpc"] = NetworkConfig.get_rpc_url(name)
            try:
                descriptors.append(ChainDescriptor(id=name, **entry))
            except ValidationError as e:
                raise ValueError(f"Invalid network configuration for {name}: {e}")
        logger.debug(f"Loaded {len(descriptors)} chains into registry")
        return cls(descriptors)

    def resolve(self, chain: str) -> ChainDescriptor:
        """
        Resolve a chain identifier.

        Raises:
            UnknownChainError: If no registered chain matches
        """
        if not isinstance(chain, str) or not chain:
            raise UnknownChainError(str(chain))
        descriptor = self._chains.get(chain.upper())
        if descriptor is None:
            raise UnknownChainError(chain)
        return descriptor

    def resolve_family(self, chain: str) -> ChainFamily:
        return self.resolve(chain).family

    def chains(self, family: Optional[ChainFamily] = None) -> List[ChainDescriptor]:
        """All descriptors, optionally restricted to one family"""
        return [
            d for d in self._chains.values()
            if family is None or d.family == family
        ]

    def __contains__(self, chain: object) -> bool:
        return isinstance(chain, str) and chain.upper() in self._chains

    def __len__(self) -> int:
        return len(self._chains)
