"""Startup wiring: one immutable context shared by every request."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from clawtrl_wallet.config import ProxyConfig
from clawtrl_wallet.payments.fetch import PaymentFetcher
from clawtrl_wallet.payments.x402 import select_adapters
from clawtrl_wallet.wallet.account import AccountIdentity
from clawtrl_wallet.wallet.chains import Chain, get_chain
from clawtrl_wallet.wallet.keystore import resolve_private_key
from clawtrl_wallet.wallet.manager import WalletManager
from clawtrl_wallet.wallet.provider import Web3Provider

logger = logging.getLogger("clawtrl_wallet.context")


@dataclass(frozen=True)
class ProxyContext:
    """Everything a request handler needs, built once at startup.

    Read-only after construction, so concurrent requests share it
    without locking.
    """

    account: AccountIdentity
    chain: Chain
    wallet: WalletManager
    fetcher: PaymentFetcher
    http_client: httpx.AsyncClient

    async def aclose(self) -> None:
        await self.http_client.aclose()


def build_context(
    config: ProxyConfig,
    account: AccountIdentity | None = None,
    provider: Web3Provider | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> ProxyContext:
    """Resolve the key and assemble the proxy's collaborators.

    *account*, *provider* and *http_client* default to the real
    implementations; pass substitutes to run against fakes.

    Raises :class:`~clawtrl_wallet.errors.KeyResolutionError` when no usable
    private key is found.
    """
    chain = get_chain(config.chain).with_rpc_url(config.rpc_url)
    if account is None:
        account = AccountIdentity(
            resolve_private_key(config.env_files, config.key_env_var)
        )
    if provider is None:
        provider = Web3Provider(chain)
    if http_client is None:
        http_client = httpx.AsyncClient(
            timeout=config.fetch.timeout_seconds,
            headers={"User-Agent": config.fetch.user_agent},
            follow_redirects=True,
        )

    adapters = select_adapters(
        config.payments.protocols,
        account,
        chain,
        max_amount=config.payments.max_amount,
        validity_seconds=config.payments.validity_seconds,
    )
    wallet = WalletManager(account, chain, provider)
    fetcher = PaymentFetcher(account, chain, http_client, adapters)
    logger.info(f"Proxy context ready for {account.address} on {chain.name} ({chain.chain_id})")
    return ProxyContext(
        account=account,
        chain=chain,
        wallet=wallet,
        fetcher=fetcher,
        http_client=http_client,
    )
