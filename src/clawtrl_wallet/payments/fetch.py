"""Outbound HTTP fetch with request signing and x402 payment."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import httpx
from x402.http.constants import HTTP_STATUS_PAYMENT_REQUIRED

from clawtrl_wallet.signing import sign_request

if TYPE_CHECKING:
    from clawtrl_wallet.payments.x402 import PaymentAdapter
    from clawtrl_wallet.wallet.account import AccountIdentity
    from clawtrl_wallet.wallet.chains import Chain

logger = logging.getLogger("clawtrl_wallet.payments.fetch")


@dataclass
class FetchResult:
    """The final upstream response, returned verbatim to the caller."""

    status: int
    headers: dict[str, str]
    body: str
    paid_with: list[str] = field(default_factory=list)

    @classmethod
    def from_response(cls, response: httpx.Response, paid_with: list[str]) -> FetchResult:
        return cls(
            status=response.status_code,
            headers=dict(response.headers.items()),
            body=response.text,
            paid_with=paid_with,
        )

    def to_dict(self) -> dict:
        return {"status": self.status, "headers": self.headers, "body": self.body}


class PaymentFetcher:
    """Signs outbound requests and settles 402 responses.

    The request goes out once, unpaid. While the latest response is a 402,
    each configured adapter in priority order gets one chance to pay and
    retry the identical request. The bound is hard: one payment per adapter
    per call, so an upstream that keeps answering 402 costs at most
    ``len(adapters)`` payments and is then returned as-is.
    """

    def __init__(
        self,
        account: AccountIdentity,
        chain: Chain,
        client: httpx.AsyncClient,
        adapters: list[PaymentAdapter] | None = None,
    ) -> None:
        self.account = account
        self.chain = chain
        self.client = client
        self.adapters = adapters or []

    async def fetch(
        self,
        url: str,
        method: str | None = None,
        headers: dict[str, str] | None = None,
        body: str | None = None,
    ) -> FetchResult:
        method = (method or "GET").upper()
        # Header names are case-insensitive; signed values replace any caller copies.
        request_headers = httpx.Headers(headers or {})
        request_headers.update(
            sign_request(self.account, self.chain.chain_id, url, method, body or "")
        )
        content = body if body else None

        if self.adapters:
            logger.info(f"fetch via x402: {method} {url}")
        else:
            logger.info(f"fetch (no x402): {method} {url}")

        response = await self._send(method, url, request_headers, content)
        paid_with: list[str] = []

        for adapter in self.adapters:
            if response.status_code != HTTP_STATUS_PAYMENT_REQUIRED:
                break
            payment_header = await adapter.build_payment_header(response)
            if payment_header is None:
                continue
            paid_with.append(adapter.name)
            retry_headers = request_headers.copy()
            retry_headers[adapter.header_name] = payment_header
            response = await self._send(method, url, retry_headers, content)
            logger.info(f"{adapter.name} retry of {method} {url} -> {response.status_code}")

        if response.status_code == HTTP_STATUS_PAYMENT_REQUIRED:
            logger.warning(f"{method} {url} still requires payment; returning 402")
        return FetchResult.from_response(response, paid_with)

    async def _send(
        self,
        method: str,
        url: str,
        headers: httpx.Headers,
        content: str | None,
    ) -> httpx.Response:
        return await self.client.request(method, url, headers=headers, content=content)
