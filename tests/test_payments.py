"""Tests for x402 payment adapters and the payment-capable fetch."""
import asyncio
import base64
import json
import logging
from unittest.mock import AsyncMock

import httpx
import pytest
from eth_account import Account
from eth_account.messages import encode_typed_data

from clawtrl_wallet.errors import PaymentError
from clawtrl_wallet.payments.fetch import PaymentFetcher
from clawtrl_wallet.payments.x402 import X402V1Adapter, X402V2Adapter, select_adapters
from clawtrl_wallet.signing import HEADER_SIGNATURE, verify_request_headers
from tests.conftest import PAYEE, TEST_ADDRESS, USDC_BASE, b64json

URL = "https://paid.example.com/api/report"


def unb64json(value: str) -> dict:
    return json.loads(base64.b64decode(value + "=" * (-len(value) % 4)))


def v2_requirements(
    amount: str = "10000",
    network: str = "eip155:8453",
    scheme: str = "exact",
    extra: dict | None = None,
) -> dict:
    return {
        "x402Version": 2,
        "resource": {"url": URL, "description": "report", "mimeType": "application/json"},
        "accepts": [
            {
                "scheme": scheme,
                "network": network,
                "amount": amount,
                "asset": USDC_BASE,
                "payTo": PAYEE,
                "maxTimeoutSeconds": 60,
                "extra": {"name": "USD Coin", "version": "2"} if extra is None else extra,
            }
        ],
    }


def v1_requirements(amount: str = "10000") -> dict:
    return {
        "x402Version": 1,
        "error": "X-PAYMENT header is required",
        "accepts": [
            {
                "scheme": "exact",
                "network": "base",
                "maxAmountRequired": amount,
                "resource": URL,
                "description": "report",
                "mimeType": "application/json",
                "asset": USDC_BASE,
                "payTo": PAYEE,
                "maxTimeoutSeconds": 60,
                "extra": {"name": "USD Coin", "version": "2"},
            }
        ],
    }


def v2_402(**kwargs) -> httpx.Response:
    return httpx.Response(
        402,
        headers={"PAYMENT-REQUIRED": b64json(v2_requirements(**kwargs))},
        json={},
    )


def v1_402(**kwargs) -> httpx.Response:
    return httpx.Response(402, json=v1_requirements(**kwargs))


def both_402() -> httpx.Response:
    return httpx.Response(
        402,
        headers={"PAYMENT-REQUIRED": b64json(v2_requirements())},
        json=v1_requirements(),
    )


class Upstream:
    """Scripted upstream: returns the queued responses in order, then repeats the last."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        index = min(len(self.requests), len(self.responses)) - 1
        return self.responses[index]


def _fetcher(account, chain, upstream, protocols=("v2", "v1"), max_amount=100_000) -> PaymentFetcher:
    adapters = select_adapters(list(protocols), account, chain, max_amount=max_amount)
    client = httpx.AsyncClient(transport=httpx.MockTransport(upstream))
    return PaymentFetcher(account, chain, client, adapters)


def _run(fetcher, **kwargs):
    return asyncio.run(fetcher.fetch(URL, **kwargs))


def _build(adapter, response):
    return asyncio.run(adapter.build_payment_header(response))


def _recover_authorization_signer(payload: dict, chain_id: int, asset: str) -> str:
    auth = payload["authorization"]
    typed_data = {
        "types": {
            "EIP712Domain": [
                {"name": "name", "type": "string"},
                {"name": "version", "type": "string"},
                {"name": "chainId", "type": "uint256"},
                {"name": "verifyingContract", "type": "address"},
            ],
            "TransferWithAuthorization": [
                {"name": "from", "type": "address"},
                {"name": "to", "type": "address"},
                {"name": "value", "type": "uint256"},
                {"name": "validAfter", "type": "uint256"},
                {"name": "validBefore", "type": "uint256"},
                {"name": "nonce", "type": "bytes32"},
            ],
        },
        "primaryType": "TransferWithAuthorization",
        "domain": {"name": "USD Coin", "version": "2", "chainId": chain_id, "verifyingContract": asset},
        "message": {
            "from": auth["from"],
            "to": auth["to"],
            "value": int(auth["value"]),
            "validAfter": int(auth["validAfter"]),
            "validBefore": int(auth["validBefore"]),
            "nonce": auth["nonce"],
        },
    }
    return Account.recover_message(encode_typed_data(full_message=typed_data), signature=payload["signature"])


class TestV2Adapter:
    def test_builds_signed_authorization(self, account, base_chain):
        adapter = X402V2Adapter(account, base_chain, max_amount=100_000)
        envelope = unb64json(_build(adapter, v2_402()))

        assert envelope["x402Version"] == 2
        assert envelope["accepted"]["network"] == "eip155:8453"
        assert envelope["accepted"]["payTo"] == PAYEE
        assert envelope["resource"]["url"] == URL
        auth = envelope["payload"]["authorization"]
        assert auth["from"] == TEST_ADDRESS
        assert auth["to"] == PAYEE
        assert str(auth["value"]) == "10000"
        assert int(auth["validBefore"]) > int(auth["validAfter"])
        assert _recover_authorization_signer(envelope["payload"], 8453, USDC_BASE) == TEST_ADDRESS

    def test_nonce_is_fresh_per_payment(self, account, base_chain):
        adapter = X402V2Adapter(account, base_chain, max_amount=100_000)
        first = unb64json(_build(adapter, v2_402()))
        second = unb64json(_build(adapter, v2_402()))
        assert first["payload"]["authorization"]["nonce"] != second["payload"]["authorization"]["nonce"]

    def test_stable_token_domain_is_known_without_extra(self, account, base_chain):
        adapter = X402V2Adapter(account, base_chain, max_amount=100_000)
        envelope = unb64json(_build(adapter, v2_402(extra={})))
        assert envelope["accepted"]["extra"]["name"] == "USD Coin"
        assert _recover_authorization_signer(envelope["payload"], 8453, USDC_BASE) == TEST_ADDRESS

    def test_ignores_v1_style_responses(self, account, base_chain):
        adapter = X402V2Adapter(account, base_chain, max_amount=100_000)
        assert _build(adapter, v1_402()) is None

    def test_other_network_is_not_payable(self, account, base_chain):
        adapter = X402V2Adapter(account, base_chain, max_amount=100_000)
        assert _build(adapter, v2_402(network="eip155:1")) is None

    def test_other_scheme_is_not_payable(self, account, base_chain):
        adapter = X402V2Adapter(account, base_chain, max_amount=100_000)
        assert _build(adapter, v2_402(scheme="upto")) is None

    def test_garbage_header_is_not_payable(self, account, base_chain):
        adapter = X402V2Adapter(account, base_chain, max_amount=100_000)
        response = httpx.Response(402, headers={"PAYMENT-REQUIRED": "%%%not-base64"})
        assert _build(adapter, response) is None

    def test_amount_above_limit_is_not_paid(self, account, base_chain, caplog):
        adapter = X402V2Adapter(account, base_chain, max_amount=100_000)
        with caplog.at_level(logging.WARNING, logger="clawtrl_wallet.payments.x402"):
            assert _build(adapter, v2_402(amount="5000000")) is None
        assert "exceeds maximum" in caplog.text

    def test_signing_failure(self, account, base_chain):
        adapter = X402V2Adapter(account, base_chain, max_amount=100_000)
        adapter.client.create_payment_payload = AsyncMock(side_effect=RuntimeError("signer offline"))
        with pytest.raises(PaymentError, match="signer offline"):
            _build(adapter, v2_402())


class TestV1Adapter:
    def test_builds_x_payment_envelope(self, account, base_chain):
        adapter = X402V1Adapter(account, base_chain, max_amount=100_000)
        envelope = unb64json(_build(adapter, v1_402()))

        assert envelope["x402Version"] == 1
        assert envelope["scheme"] == "exact"
        assert envelope["network"] == "base"
        assert str(envelope["payload"]["authorization"]["value"]) == "10000"
        assert _recover_authorization_signer(envelope["payload"], 8453, USDC_BASE) == TEST_ADDRESS

    def test_non_json_body_is_not_payable(self, account, base_chain):
        adapter = X402V1Adapter(account, base_chain, max_amount=100_000)
        assert _build(adapter, httpx.Response(402, text="pay up")) is None


class TestSelectAdapters:
    def test_priority_order(self, account, base_chain):
        adapters = select_adapters(["v2", "v1"], account, base_chain, max_amount=1)
        assert [a.name for a in adapters] == ["x402-v2", "x402-v1"]
        assert [a.header_name for a in adapters] == ["PAYMENT-SIGNATURE", "X-PAYMENT"]

    def test_empty(self, account, base_chain):
        assert select_adapters([], account, base_chain, max_amount=1) == []

    def test_unknown(self, account, base_chain):
        with pytest.raises(ValueError):
            select_adapters(["v9"], account, base_chain, max_amount=1)


class TestPaymentFetcher:
    def test_plain_success_makes_one_call(self, account, base_chain):
        upstream = Upstream(httpx.Response(200, text="free"))
        result = _run(_fetcher(account, base_chain, upstream))
        assert len(upstream.requests) == 1
        assert result.status == 200
        assert result.body == "free"
        assert result.paid_with == []

    def test_requests_carry_valid_signature_headers(self, account, base_chain):
        upstream = Upstream(httpx.Response(200))
        _run(_fetcher(account, base_chain, upstream), method="post", body='{"q":1}',
             headers={"Content-Type": "application/json"})
        request = upstream.requests[0]
        assert request.method == "POST"
        assert request.headers["content-type"] == "application/json"
        assert request.content == b'{"q":1}'
        signer = verify_request_headers(request.headers, URL, "POST", '{"q":1}')
        assert signer == TEST_ADDRESS

    @pytest.mark.parametrize("name", [HEADER_SIGNATURE, HEADER_SIGNATURE.lower(), HEADER_SIGNATURE.upper()])
    def test_caller_cannot_override_signature_headers(self, account, base_chain, name):
        upstream = Upstream(httpx.Response(200))
        _run(_fetcher(account, base_chain, upstream), headers={name: "0xforged", "X-Trace": "t1"})
        request = upstream.requests[0]
        assert request.headers.get_list(HEADER_SIGNATURE) != ["0xforged"]
        assert len(request.headers.get_list(HEADER_SIGNATURE)) == 1
        assert request.headers["x-trace"] == "t1"
        assert verify_request_headers(request.headers, URL, "GET") == TEST_ADDRESS

    def test_402_then_200_makes_exactly_two_calls(self, account, base_chain):
        upstream = Upstream(v2_402(), httpx.Response(200, text="paid content"))
        result = _run(_fetcher(account, base_chain, upstream))

        assert len(upstream.requests) == 2
        assert result.status == 200
        assert result.body == "paid content"
        assert result.paid_with == ["x402-v2"]
        assert "payment-signature" not in upstream.requests[0].headers
        assert "payment-signature" in upstream.requests[1].headers

    def test_retry_is_the_identical_request(self, account, base_chain):
        upstream = Upstream(v2_402(), httpx.Response(200))
        _run(_fetcher(account, base_chain, upstream), method="POST", body="data")
        first, second = upstream.requests
        assert second.method == first.method
        assert second.url == first.url
        assert second.content == first.content
        assert second.headers[HEADER_SIGNATURE] == first.headers[HEADER_SIGNATURE]

    def test_legacy_fallback_when_only_v1_is_understood(self, account, base_chain):
        upstream = Upstream(v1_402(), httpx.Response(200))
        result = _run(_fetcher(account, base_chain, upstream))

        assert len(upstream.requests) == 2
        assert result.status == 200
        assert result.paid_with == ["x402-v1"]
        assert "x-payment" in upstream.requests[1].headers

    def test_always_402_is_bounded_by_adapter_count(self, account, base_chain):
        upstream = Upstream(both_402())
        result = _run(_fetcher(account, base_chain, upstream))

        # one unpaid attempt plus one paid retry per adapter
        assert len(upstream.requests) == 3
        assert result.status == 402
        assert result.paid_with == ["x402-v2", "x402-v1"]

    def test_always_402_with_single_adapter(self, account, base_chain):
        upstream = Upstream(v2_402())
        result = _run(_fetcher(account, base_chain, upstream, protocols=["v2"]))
        assert len(upstream.requests) == 2
        assert result.status == 402

    def test_no_adapters_passes_402_through(self, account, base_chain):
        upstream = Upstream(both_402())
        result = _run(_fetcher(account, base_chain, upstream, protocols=[]))

        assert len(upstream.requests) == 1
        assert result.status == 402
        assert json.loads(result.body)["x402Version"] == 1
        assert "payment-required" in result.headers

    def test_unpayable_402_is_returned_without_retry(self, account, base_chain):
        upstream = Upstream(v2_402(network="eip155:1"))
        result = _run(_fetcher(account, base_chain, upstream))
        assert len(upstream.requests) == 1
        assert result.status == 402

    def test_over_limit_402_is_returned_unpaid(self, account, base_chain):
        upstream = Upstream(v2_402(amount="1000000"))
        result = _run(_fetcher(account, base_chain, upstream, protocols=["v2"], max_amount=999_999))
        assert len(upstream.requests) == 1
        assert result.status == 402
        assert result.paid_with == []
        # the caller still sees the upstream's payment terms
        assert unb64json(result.headers["payment-required"])["accepts"][0]["amount"] == "1000000"

    def test_response_headers_are_returned(self, account, base_chain):
        upstream = Upstream(
            v2_402(),
            httpx.Response(200, headers={"PAYMENT-RESPONSE": "settled", "X-Custom": "1"}),
        )
        result = _run(_fetcher(account, base_chain, upstream))
        assert result.headers["payment-response"] == "settled"
        assert result.headers["x-custom"] == "1"
        assert result.to_dict().keys() == {"status", "headers", "body"}
