"""
Chain backends, one per chain family.
"""
import logging
from typing import Dict, Optional, Type

from ..config import ClientSettings
from ..models import ChainFamily
from ..signer import KeyManager
from .base import ChainBackend, SubmissionResult
from .evm import EvmBackend
from .stub import StubBackend
from .substrate import UniqueBackend
from .tezos import TezosBackend

__all__ = [
    "ChainBackend", "SubmissionResult", "EvmBackend", "TezosBackend",
    "UniqueBackend", "StubBackend", "BACKEND_CLASSES", "get_backend",
]

BACKEND_CLASSES: Dict[ChainFamily, Type[ChainBackend]] = {
    ChainFamily.EVM: EvmBackend,
    ChainFamily.TEZOS: TezosBackend,
    ChainFamily.SUBSTRATE: UniqueBackend,
}


def get_backend(
    family: ChainFamily,
    key_manager: KeyManager,
    settings: Optional[ClientSettings] = None,
    logger: Optional[logging.Logger] = None
) -> ChainBackend:
    """
    Create the backend for a chain family.

    Raises:
        ValueError: If no backend exists for the family
    """
    backend_class = BACKEND_CLASSES.get(family)
    if backend_class is None:
        raise ValueError(f"No backend for chain family: {family}")
    return backend_class(key_manager, settings=settings, logger=logger)
