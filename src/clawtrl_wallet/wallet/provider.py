"""Web3 provider for the configured EVM chain."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from web3 import Web3
from web3.exceptions import TimeExhausted
from web3.middleware import ExtraDataToPOAMiddleware

from clawtrl_wallet.errors import ConfirmationTimeout

if TYPE_CHECKING:
    from clawtrl_wallet.wallet.account import AccountIdentity
    from clawtrl_wallet.wallet.chains import Chain

logger = logging.getLogger("clawtrl_wallet.wallet.provider")

ERC20_ABI = [
    {
        "constant": True,
        "inputs": [{"name": "_owner", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "balance", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "constant": False,
        "inputs": [
            {"name": "_to", "type": "address"},
            {"name": "_value", "type": "uint256"},
        ],
        "name": "transfer",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]


class Web3Provider:
    """Chain access for one EVM network: reads, transaction submission,
    and receipt waiting.

    Calls are synchronous; the HTTP layer runs them off the event loop.
    """

    def __init__(self, chain: Chain, w3: Web3 | None = None) -> None:
        self.chain = chain
        if w3 is None:
            w3 = Web3(Web3.HTTPProvider(chain.rpc_url))
            # L2s such as Base carry extra data in block headers
            if chain.chain_id != 1:
                w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        self.w3 = w3

    def get_native_balance(self, address: str) -> int:
        """Native balance in base units (wei)."""
        return self.w3.eth.get_balance(Web3.to_checksum_address(address))

    def get_token_balance(self, token_address: str, owner: str) -> int:
        """ERC-20 balance of *owner* in the token's base units."""
        token = self._token(token_address)
        return token.functions.balanceOf(Web3.to_checksum_address(owner)).call()

    def send_native(self, account: AccountIdentity, to_address: str, value: int) -> str:
        """Send *value* wei to *to_address*. Returns the tx hash."""
        tx = self._tx_params(account)
        tx["to"] = Web3.to_checksum_address(to_address)
        tx["value"] = value
        tx["gas"] = self.w3.eth.estimate_gas(tx)
        return self._sign_and_send(account, tx)

    def send_token_transfer(
        self,
        account: AccountIdentity,
        token_address: str,
        to_address: str,
        amount: int,
    ) -> str:
        """Call ``transfer(to_address, amount)`` on *token_address*. Returns the tx hash."""
        transfer = self._token(token_address).functions.transfer(
            Web3.to_checksum_address(to_address), amount
        )
        # build_transaction estimates gas against the encoded call
        tx = transfer.build_transaction(self._tx_params(account))
        return self._sign_and_send(account, tx)

    def wait_for_receipt(self, tx_hash: str, timeout: float) -> dict[str, Any]:
        """Block until *tx_hash* is mined.

        Raises :class:`ConfirmationTimeout` if it is not seen in *timeout* seconds.
        """
        try:
            receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
        except TimeExhausted:
            raise ConfirmationTimeout(tx_hash, timeout) from None
        return dict(receipt)

    def _token(self, token_address: str):
        return self.w3.eth.contract(address=Web3.to_checksum_address(token_address), abi=ERC20_ABI)

    def _tx_params(self, account: AccountIdentity) -> dict[str, Any]:
        """Sender, nonce, chain id, and fees for a new transaction.

        Uses EIP-1559 fee parameters with a legacy gas price fallback.
        """
        w3 = self.w3
        tx: dict[str, Any] = {"from": account.address}
        tx["nonce"] = w3.eth.get_transaction_count(account.address, "pending")
        tx["chainId"] = self.chain.chain_id

        try:
            latest = w3.eth.get_block("latest")
            base_fee = latest.get("baseFeePerGas")
            if base_fee is None:
                raise ValueError("No baseFeePerGas")
            max_priority = min(Web3.to_wei(1.5, "gwei"), base_fee)
            tx["maxFeePerGas"] = base_fee * 2 + max_priority
            tx["maxPriorityFeePerGas"] = max_priority
        except ValueError:
            tx["gasPrice"] = w3.eth.gas_price
        return tx

    def _sign_and_send(self, account: AccountIdentity, tx: dict[str, Any]) -> str:
        raw = account.sign_transaction(tx)
        tx_hash = self.w3.eth.send_raw_transaction(raw)
        return Web3.to_hex(tx_hash)
