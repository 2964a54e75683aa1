"""
Local signer backed by an in-memory EVM private key.
"""
from typing import Any, Dict

from eth_account import Account
from eth_account.signers.local import LocalAccount


class LocalSigner:
    """
    EVM signer holding a private key in process memory.

    The key never leaves this object; the SDK only sees ``address`` and the
    signed transaction.
    """

    def __init__(self, private_key: str):
        self._account: LocalAccount = Account.from_key(private_key)
        self.address = self._account.address

    def sign_transaction(self, transaction_dict: Dict[str, Any]) -> Any:
        return self._account.sign_transaction(transaction_dict)

    def __repr__(self) -> str:
        return f"LocalSigner(address={self.address})"
