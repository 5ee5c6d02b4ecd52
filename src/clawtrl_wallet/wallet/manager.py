"""Balance and transfer operations for the proxy's account."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from web3 import Web3

from clawtrl_wallet.errors import (
    BalanceQueryError,
    ConfirmationTimeout,
    TransferSubmissionError,
    TransferValidationError,
)
from clawtrl_wallet.wallet.units import format_units, parse_units

if TYPE_CHECKING:
    from clawtrl_wallet.wallet.account import AccountIdentity
    from clawtrl_wallet.wallet.chains import Chain
    from clawtrl_wallet.wallet.provider import Web3Provider

logger = logging.getLogger("clawtrl_wallet.wallet.manager")

CONFIRMATION_TIMEOUT_SECONDS = 30.0

NATIVE_DISPLAY_PLACES = 8
STABLE_DISPLAY_PLACES = 2

TOKENS = ("eth", "usdc")


@dataclass
class TransferResult:
    """Outcome of a submitted transfer."""

    hash: str
    token: str
    amount: Any
    to: str
    confirmed: bool = False
    block_number: int | None = None

    def to_dict(self) -> dict:
        return {
            "success": self.confirmed,
            "hash": self.hash,
            "token": self.token,
            "amount": self.amount,
            "to": self.to,
        }


class WalletManager:
    """Reads balances and sends transfers for the one proxy account.

    Transfers are never retried here: resubmitting a value transfer after
    an ambiguous failure risks paying twice.
    """

    def __init__(
        self,
        account: AccountIdentity,
        chain: Chain,
        provider: Web3Provider,
        confirmation_timeout: float = CONFIRMATION_TIMEOUT_SECONDS,
    ) -> None:
        self.account = account
        self.chain = chain
        self.provider = provider
        self.confirmation_timeout = confirmation_timeout

    # ------------------------------------------------------------------
    # Balances
    # ------------------------------------------------------------------

    def get_balances(self) -> dict:
        """Native and stable-token balances as display strings."""
        address = self.account.address
        try:
            native = self.provider.get_native_balance(address)
            stable = self.provider.get_token_balance(self.chain.stable_address, address)
        except Exception as exc:
            logger.warning(f"Balance query failed on {self.chain.name}: {exc}")
            raise BalanceQueryError(str(exc)) from exc

        return {
            "address": address,
            "chain": self.chain.name,
            "eth": format_units(native, self.chain.native_decimals, NATIVE_DISPLAY_PLACES),
            "usdc": format_units(stable, self.chain.stable_decimals, STABLE_DISPLAY_PLACES),
        }

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    def transfer(self, to: str | None, amount: Any, token: str | None = None) -> TransferResult:
        """Send *amount* of *token* (``"eth"`` or ``"usdc"``) to *to*.

        Blocks until the transaction is confirmed or the confirmation
        timeout elapses.

        Raises
        ------
        TransferValidationError
            Missing or unusable recipient, amount, or token.
        TransferSubmissionError
            The chain rejected the transaction, or it reverted.
        ConfirmationTimeout
            The transaction was sent but not seen mined in time.
        """
        token_name, base_units = self._validate(to, amount, token)

        try:
            if token_name == "usdc":
                tx_hash = self.provider.send_token_transfer(
                    self.account, self.chain.stable_address, to, base_units
                )
            else:
                tx_hash = self.provider.send_native(self.account, to, base_units)
        except Exception as exc:
            logger.error(f"Transfer of {amount} {token_name} to {to} rejected: {exc}")
            raise TransferSubmissionError(f"Transaction submission failed: {exc}") from exc

        logger.info(f"Transfer submitted: {amount} {token_name} to {to} (tx={tx_hash})")
        result = TransferResult(hash=tx_hash, token=token_name, amount=amount, to=to)

        try:
            receipt = self.provider.wait_for_receipt(tx_hash, self.confirmation_timeout)
        except ConfirmationTimeout:
            logger.warning(f"Transfer {tx_hash} not confirmed within {self.confirmation_timeout:g}s")
            raise
        except Exception as exc:
            raise TransferSubmissionError(
                f"Waiting for confirmation of {tx_hash} failed: {exc}"
            ) from exc

        if receipt.get("status", 1) == 0:
            raise TransferSubmissionError(f"Transaction {tx_hash} reverted")

        result.confirmed = True
        result.block_number = receipt.get("blockNumber")
        logger.info(f"Transfer {tx_hash} confirmed in block {result.block_number}")
        return result

    def _validate(self, to: str | None, amount: Any, token: str | None) -> tuple[str, int]:
        if not to or amount is None or amount == "":
            raise TransferValidationError("to and amount required")

        token_name = (token or "eth").lower()
        if token_name not in TOKENS:
            raise TransferValidationError(
                f"Unsupported token '{token}'. Use one of: {', '.join(TOKENS)}"
            )
        if not Web3.is_address(to):
            raise TransferValidationError(f"Invalid recipient address: {to}")

        decimals = (
            self.chain.stable_decimals if token_name == "usdc" else self.chain.native_decimals
        )
        try:
            base_units = parse_units(amount, decimals)
        except ValueError as exc:
            raise TransferValidationError(str(exc)) from None
        if base_units <= 0:
            raise TransferValidationError(f"Amount must be positive: {amount}")
        return token_name, base_units
