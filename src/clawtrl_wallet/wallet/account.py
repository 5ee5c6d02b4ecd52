"""Signing identity backed by an in-memory eth-account key."""

from __future__ import annotations

from typing import Any

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount

from clawtrl_wallet.errors import KeyResolutionError


def _hex(value: bytes) -> str:
    # HexBytes.hex() dropped the 0x prefix in hexbytes 1.0
    text = value.hex()
    return text if text.startswith("0x") else f"0x{text}"


class AccountIdentity:
    """The single account this proxy signs for.

    The private key stays inside the wrapped ``LocalAccount``, which is only
    handed to signing libraries; nothing on this class prints the key.
    """

    def __init__(self, private_key: str) -> None:
        try:
            self._account = Account.from_key(private_key)
        except Exception as exc:
            raise KeyResolutionError(f"Invalid private key: {exc}") from None

    def __repr__(self) -> str:
        return f"AccountIdentity(address={self.address!r})"

    @property
    def address(self) -> str:
        """Checksummed account address."""
        return self._account.address

    def sign_message(self, message: str) -> str:
        """EIP-191 personal-sign *message* and return the 0x signature."""
        signed = self._account.sign_message(encode_defunct(text=message))
        return _hex(signed.signature)

    @property
    def local_account(self) -> LocalAccount:
        """The eth-account signer, for libraries that sign on our behalf."""
        return self._account

    def sign_transaction(self, tx: dict[str, Any]) -> bytes:
        """Sign a transaction dict and return the raw bytes to broadcast."""
        signed = self._account.sign_transaction(tx)
        return bytes(signed.raw_transaction)


def recover_message_signer(message: str, signature: str) -> str:
    """Return the address that produced *signature* over *message*."""
    return Account.recover_message(encode_defunct(text=message), signature=signature)
