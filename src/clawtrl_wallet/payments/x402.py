"""x402 payment adapters.

An adapter reads the payment requirements out of an HTTP 402 response and
builds the header that authorizes the payment on a retry. Both protocol
generations pay with the ``exact`` scheme: an EIP-3009
``TransferWithAuthorization`` signed by the proxy account, which the
resource server's facilitator settles on-chain. Payload construction and
signing are done by the ``x402`` SDK; the adapters decide what may be paid.

- **v2** reads requirements from the base64 JSON ``PAYMENT-REQUIRED`` header
  and answers with ``PAYMENT-SIGNATURE``.
- **v1** (legacy) reads requirements from the JSON 402 body and answers with
  ``X-PAYMENT``.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

import httpx
from web3 import Web3
from x402 import x402Client
from x402.http.constants import PAYMENT_REQUIRED_HEADER, PAYMENT_SIGNATURE_HEADER
from x402.http.utils import decode_payment_required_header, encode_payment_signature_header
from x402.mechanisms.evm import EthAccountSigner
from x402.mechanisms.evm.exact.register import register_exact_evm_client
from x402.schemas import PaymentRequiredV1

from clawtrl_wallet.errors import PaymentError

if TYPE_CHECKING:
    from clawtrl_wallet.wallet.account import AccountIdentity
    from clawtrl_wallet.wallet.chains import Chain

logger = logging.getLogger("clawtrl_wallet.payments.x402")

EXACT_SCHEME = "exact"
X_PAYMENT_HEADER = "X-PAYMENT"


class PaymentAdapter:
    """Base class for one x402 protocol generation.

    Subclasses define how requirements are found in a 402 response, which
    network label they expect, and where the requested amount lives.
    """

    name: str = ""
    version: int = 0
    header_name: str = ""

    def __init__(
        self,
        account: AccountIdentity,
        chain: Chain,
        max_amount: int,
        validity_seconds: int = 600,
    ) -> None:
        self.account = account
        self.chain = chain
        self.max_amount = max_amount
        self.validity_seconds = validity_seconds
        self.client = x402Client()
        register_exact_evm_client(self.client, EthAccountSigner(account.local_account))

    # ------------------------------------------------------------------
    # Protocol-specific hooks
    # ------------------------------------------------------------------

    def read_required(self, response: httpx.Response) -> Any:
        """Return the parsed payment-required document, or ``None``."""
        raise NotImplementedError

    def network_label(self) -> str:
        raise NotImplementedError

    def required_amount(self, requirement: Any) -> int:
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Shared flow
    # ------------------------------------------------------------------

    async def build_payment_header(self, response: httpx.Response) -> str | None:
        """Build the payment header answering a 402 *response*.

        Returns ``None`` when this adapter cannot pay: the response is not in
        its format, nothing it accepts is an ``exact`` payment on this chain,
        or every such payment asks for more than ``max_amount``. Raises
        :class:`PaymentError` when signing an eligible payment fails.
        """
        try:
            required = self.read_required(response)
        except (ValueError, TypeError) as exc:
            logger.debug(f"{self.name}: unreadable payment requirements: {exc}")
            return None
        if required is None:
            return None

        requirement = self.select_requirement(list(required.accepts or []))
        if requirement is None:
            return None

        # Offer the SDK only the requirement chosen here.
        required = required.model_copy(update={"accepts": [requirement]})
        try:
            payload = await self.client.create_payment_payload(required)
        except Exception as exc:
            raise PaymentError(f"{self.name} payment signing failed: {exc}") from exc

        logger.info(
            f"{self.name}: authorized {self.required_amount(requirement)} base units of "
            f"{requirement.asset} to {requirement.pay_to}"
        )
        return encode_payment_signature_header(payload)

    def select_requirement(self, accepts: list) -> Any:
        """Pick the first ``exact`` requirement on our network within the limit.

        Requirements above ``max_amount`` are skipped with a warning; the 402
        is then left for the caller to see.
        """
        over_limit = []
        for requirement in accepts:
            if str(requirement.scheme).lower() != EXACT_SCHEME:
                continue
            if str(requirement.network).lower() != self.network_label():
                continue
            try:
                amount = self.required_amount(requirement)
            except (TypeError, ValueError):
                continue
            if amount < 0 or not Web3.is_address(requirement.asset) or not Web3.is_address(requirement.pay_to):
                continue
            extra = self._domain_extra(requirement)
            if extra is None:
                continue
            if amount > self.max_amount:
                over_limit.append(amount)
                continue
            update: dict[str, Any] = {"extra": extra}
            if not requirement.max_timeout_seconds:
                update["max_timeout_seconds"] = self.validity_seconds
            return requirement.model_copy(update=update)

        if over_limit:
            logger.warning(
                f"{self.name}: payment amount {min(over_limit)} exceeds maximum "
                f"allowed {self.max_amount}; not paying"
            )
        else:
            logger.info(f"{self.name}: no payable requirement for {self.network_label()}")
        return None

    def _domain_extra(self, requirement: Any) -> dict | None:
        """``extra`` carrying the asset's EIP-712 domain name and version.

        Taken from the requirement when the server supplies it; otherwise only
        the chain's own stable token is known.
        """
        extra = dict(requirement.extra or {})
        if extra.get("name") and extra.get("version"):
            return extra
        if str(requirement.asset).lower() == self.chain.stable_address.lower():
            extra["name"] = self.chain.stable_domain_name
            extra["version"] = self.chain.stable_domain_version
            return extra
        return None


class X402V2Adapter(PaymentAdapter):
    """Current-generation x402 (``PAYMENT-REQUIRED`` / ``PAYMENT-SIGNATURE``)."""

    name = "x402-v2"
    version = 2
    header_name = PAYMENT_SIGNATURE_HEADER

    def read_required(self, response: httpx.Response) -> Any:
        value = response.headers.get(PAYMENT_REQUIRED_HEADER)
        if value:
            return decode_payment_required_header(value)
        return None

    def network_label(self) -> str:
        return self.chain.caip2_network

    def required_amount(self, requirement: Any) -> int:
        return int(requirement.amount)


class X402V1Adapter(PaymentAdapter):
    """Legacy x402 (JSON 402 body / ``X-PAYMENT``)."""

    name = "x402-v1"
    version = 1
    header_name = X_PAYMENT_HEADER

    def read_required(self, response: httpx.Response) -> Any:
        if not response.content:
            return None
        data = json.loads(response.text)
        if not isinstance(data, dict) or data.get("x402Version") != 1 or "accepts" not in data:
            return None
        return PaymentRequiredV1.model_validate(data)

    def network_label(self) -> str:
        return self.chain.x402_network

    def required_amount(self, requirement: Any) -> int:
        return int(requirement.max_amount_required)


ADAPTERS: dict[str, type[PaymentAdapter]] = {
    "v2": X402V2Adapter,
    "v1": X402V1Adapter,
}


def select_adapters(
    protocols: list[str],
    account: AccountIdentity,
    chain: Chain,
    max_amount: int,
    validity_seconds: int = 600,
) -> list[PaymentAdapter]:
    """Instantiate the configured adapters in priority order.

    An empty *protocols* list disables payments: 402s pass through.
    """
    adapters = []
    for protocol in protocols:
        if protocol not in ADAPTERS:
            raise ValueError(
                f"Unknown payment protocol '{protocol}'. Available: {list(ADAPTERS)}"
            )
        adapters.append(ADAPTERS[protocol](account, chain, max_amount, validity_seconds))
    if adapters:
        logger.info(
            f"x402 payment adapters ready: {', '.join(a.name for a in adapters)} "
            f"(scheme: {EXACT_SCHEME}, network: {chain.name})"
        )
    else:
        logger.info("x402 payments disabled; 402 responses will pass through")
    return adapters
