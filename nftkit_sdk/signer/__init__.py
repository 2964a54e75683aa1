"""
Signing boundary of the NFT Kit SDK.

The SDK never handles raw key material. State-changing operations carry an
opaque ``signer_ref`` which a key-management collaborator resolves into a
``Signer``.
"""
import threading
from typing import Any, Dict, Optional, Protocol, runtime_checkable

__all__ = ["Signer", "KeyManager", "StaticKeyManager", "SignerNotFoundError"]


class SignerNotFoundError(LookupError):
    """Raised by key managers when a signer reference is unknown."""
    pass


@runtime_checkable
class Signer(Protocol):
    """Protocol for signers"""
    address: str

    def sign_transaction(self, transaction_dict: Dict[str, Any]) -> Any:
        """
        Sign a transaction and return the signed object.

        EVM signers return an object exposing ``raw_transaction``; signers for
        other families return an object with ``raw_transaction`` holding the
        network's signed operation bytes.
        """
        ...


@runtime_checkable
class KeyManager(Protocol):
    """Protocol for the key-management collaborator"""

    def resolve_signer(self, signer_ref: str) -> Signer:
        """
        Resolve a signer reference.

        Raises:
            SignerNotFoundError: If the reference is unknown
        """
        ...


class StaticKeyManager:
    """
    In-process key manager holding pre-built signers.

    Suitable for tests and single-tenant deployments where signers are
    created at startup; lookups are thread-safe.
    """

    def __init__(self, signers: Optional[Dict[str, Signer]] = None):
        self._signers: Dict[str, Signer] = dict(signers or {})
        self._lock = threading.RLock()

    def register(self, signer_ref: str, signer: Signer) -> None:
        with self._lock:
            self._signers[signer_ref] = signer

    def resolve_signer(self, signer_ref: str) -> Signer:
        with self._lock:
            signer = self._signers.get(signer_ref)
        if signer is None:
            raise SignerNotFoundError("Unknown signer reference")
        return signer
