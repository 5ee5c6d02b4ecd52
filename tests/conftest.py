"""
Pytest configuration and shared fakes for clawtrl-wallet tests.
"""
from __future__ import annotations

import base64
import json
from typing import Any, Callable

import httpx
import pytest
from fastapi.testclient import TestClient

from clawtrl_wallet.config import PaymentConfig, ProxyConfig
from clawtrl_wallet.context import ProxyContext, build_context
from clawtrl_wallet.errors import ConfirmationTimeout
from clawtrl_wallet.proxy.server import create_app
from clawtrl_wallet.wallet.account import AccountIdentity
from clawtrl_wallet.wallet.chains import get_chain

# Well-known development key (Hardhat/Anvil account #0). Never funded on mainnet.
TEST_PRIVATE_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
TEST_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"

RECIPIENT = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
PAYEE = "0x3C44CdDdB6a900fa2b585dd299e03d12FA4293BC"
USDC_BASE = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"

TX_HASH = "0x" + "ab" * 32


def b64json(payload: dict) -> str:
    """Base64 JSON, as carried in x402 headers."""
    return base64.b64encode(json.dumps(payload).encode()).decode()


class FakeChainClient:
    """Stands in for Web3Provider; records every call it receives."""

    def __init__(
        self,
        native_balance: int = 0,
        token_balance: int = 0,
        confirm: str = "ok",
        reject_with: Exception | None = None,
        balance_error: Exception | None = None,
    ) -> None:
        self.native_balance = native_balance
        self.token_balance = token_balance
        self.confirm = confirm
        self.reject_with = reject_with
        self.balance_error = balance_error
        self.calls: list[tuple[str, tuple[Any, ...]]] = []

    def get_native_balance(self, address: str) -> int:
        self.calls.append(("get_native_balance", (address,)))
        if self.balance_error:
            raise self.balance_error
        return self.native_balance

    def get_token_balance(self, token_address: str, owner: str) -> int:
        self.calls.append(("get_token_balance", (token_address, owner)))
        if self.balance_error:
            raise self.balance_error
        return self.token_balance

    def send_native(self, account, to_address: str, value: int) -> str:
        self.calls.append(("send_native", (to_address, value)))
        if self.reject_with:
            raise self.reject_with
        return TX_HASH

    def send_token_transfer(self, account, token_address: str, to_address: str, amount: int) -> str:
        self.calls.append(("send_token_transfer", (token_address, to_address, amount)))
        if self.reject_with:
            raise self.reject_with
        return TX_HASH

    def wait_for_receipt(self, tx_hash: str, timeout: float) -> dict:
        self.calls.append(("wait_for_receipt", (tx_hash, timeout)))
        if self.confirm == "timeout":
            raise ConfirmationTimeout(tx_hash, timeout)
        if self.confirm == "reverted":
            return {"status": 0, "blockNumber": 100}
        return {"status": 1, "blockNumber": 100}

    @property
    def submissions(self) -> list[str]:
        return [name for name, _ in self.calls if name.startswith("send_")]


def _ok_handler(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json={"ok": True})


def make_context(
    handler: Callable[[httpx.Request], httpx.Response] = _ok_handler,
    chain_client: FakeChainClient | None = None,
    protocols: list[str] | None = None,
    max_amount: int = 100_000,
) -> ProxyContext:
    payments = PaymentConfig(max_amount=max_amount)
    if protocols is not None:
        payments = PaymentConfig(protocols=protocols, max_amount=max_amount)
    config = ProxyConfig(payments=payments)
    return build_context(
        config,
        account=AccountIdentity(TEST_PRIVATE_KEY),
        provider=chain_client or FakeChainClient(),
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


@pytest.fixture
def account() -> AccountIdentity:
    return AccountIdentity(TEST_PRIVATE_KEY)


@pytest.fixture
def base_chain():
    return get_chain("base")


@pytest.fixture
def chain_client() -> FakeChainClient:
    return FakeChainClient(native_balance=1_500_000_000_000_000_000, token_balance=2_500_000)


@pytest.fixture
def client(chain_client: FakeChainClient) -> TestClient:
    return TestClient(create_app(make_context(chain_client=chain_client)))
