"""ERC-8128 style HTTP request signatures.

A signed request carries four headers. The signature is an EIP-191
personal-sign over a newline-joined canonical message::

    METHOD
    https://full/url?including=query
    sha256(body) as hex
    unix timestamp in seconds
    chain id

The URL is signed exactly as given, without normalization. An absent body
is hashed as the empty string. Receivers recompute the message, recover the
signer, compare it to ``X-ERC8128-Address``, and apply their own timestamp
window.
"""

from __future__ import annotations

import hashlib
import time
from typing import TYPE_CHECKING, Mapping

from clawtrl_wallet.errors import SignatureVerificationError
from clawtrl_wallet.wallet.account import recover_message_signer

if TYPE_CHECKING:
    from clawtrl_wallet.wallet.account import AccountIdentity

HEADER_ADDRESS = "X-ERC8128-Address"
HEADER_SIGNATURE = "X-ERC8128-Signature"
HEADER_TIMESTAMP = "X-ERC8128-Timestamp"
HEADER_CHAIN_ID = "X-ERC8128-Chain-Id"

SIGNATURE_HEADERS = (HEADER_ADDRESS, HEADER_SIGNATURE, HEADER_TIMESTAMP, HEADER_CHAIN_ID)


def body_digest(body: str | bytes | None) -> str:
    """Hex SHA-256 of the request body; ``None`` hashes like ``""``."""
    if body is None:
        body = b""
    elif isinstance(body, str):
        body = body.encode("utf-8")
    return hashlib.sha256(body).hexdigest()


def canonical_message(
    method: str,
    url: str,
    body: str | bytes | None,
    timestamp: int,
    chain_id: int,
) -> str:
    """Build the newline-joined message that gets signed."""
    return "\n".join(
        [method.upper(), url, body_digest(body), str(int(timestamp)), str(chain_id)]
    )


def sign_request(
    account: AccountIdentity,
    chain_id: int,
    url: str,
    method: str = "GET",
    body: str | bytes | None = None,
    timestamp: int | None = None,
) -> dict[str, str]:
    """Return the four signature headers for one request.

    Headers are produced fresh on each call and must not be reused.
    """
    if timestamp is None:
        timestamp = int(time.time())
    message = canonical_message(method, url, body, timestamp, chain_id)
    return {
        HEADER_ADDRESS: account.address,
        HEADER_SIGNATURE: account.sign_message(message),
        HEADER_TIMESTAMP: str(int(timestamp)),
        HEADER_CHAIN_ID: str(chain_id),
    }


def verify_request_headers(
    headers: Mapping[str, str],
    url: str,
    method: str = "GET",
    body: str | bytes | None = None,
    max_age: int | None = None,
    now: int | None = None,
) -> str:
    """Check signature headers against a request and return the signer.

    Header names are matched case-insensitively. When *max_age* is given,
    timestamps older (or further in the future) than that many seconds are
    rejected.

    Raises :class:`SignatureVerificationError` on any mismatch.
    """
    lowered = {k.lower(): v for k, v in headers.items()}
    try:
        address = lowered[HEADER_ADDRESS.lower()]
        signature = lowered[HEADER_SIGNATURE.lower()]
        timestamp = int(lowered[HEADER_TIMESTAMP.lower()])
        chain_id = int(lowered[HEADER_CHAIN_ID.lower()])
    except KeyError as exc:
        raise SignatureVerificationError(f"Missing signature header {exc.args[0]}") from None
    except ValueError:
        raise SignatureVerificationError("Malformed timestamp or chain id header") from None

    if max_age is not None:
        if now is None:
            now = int(time.time())
        if abs(now - timestamp) > max_age:
            raise SignatureVerificationError(
                f"Signature timestamp {timestamp} is outside the {max_age}s window"
            )

    message = canonical_message(method, url, body, timestamp, chain_id)
    try:
        recovered = recover_message_signer(message, signature)
    except Exception as exc:
        raise SignatureVerificationError(f"Invalid signature: {exc}") from None
    if recovered.lower() != address.lower():
        raise SignatureVerificationError(
            f"Signature was made by {recovered}, not {address}"
        )
    return recovered
