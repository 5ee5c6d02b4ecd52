"""Exception types shared across the signing proxy.

Every exception the request handlers are expected to report derives from
:class:`ProxyError`. ``status_code`` is the HTTP status the proxy answers
with; the message text is returned to the caller as-is.
"""

from __future__ import annotations


class ProxyError(Exception):
    """Base class for errors reported to proxy clients."""

    status_code: int = 500


class KeyResolutionError(ProxyError):
    """The account private key is missing or malformed (fatal at startup)."""

    def __init__(self, message: str, searched: list[str] | None = None) -> None:
        super().__init__(message)
        self.searched = searched or []


class TransferValidationError(ProxyError):
    """A transfer request is missing fields or carries an unusable value."""

    status_code = 400


class TransferSubmissionError(ProxyError):
    """The chain rejected or failed to accept a transaction."""


class ConfirmationTimeout(ProxyError):
    """A submitted transaction was not confirmed within the wait window.

    The transaction may still be mined later; its status is unknown.
    """

    def __init__(self, tx_hash: str, timeout: float) -> None:
        super().__init__(
            f"Transaction {tx_hash} was submitted but not confirmed within "
            f"{timeout:g}s; confirmation status is unknown"
        )
        self.tx_hash = tx_hash
        self.timeout = timeout


class BalanceQueryError(ProxyError):
    """Reading a balance from the chain failed."""


class PaymentError(ProxyError):
    """A 402 payment requirement could not be satisfied."""


class SignatureVerificationError(ProxyError):
    """Signed request headers are missing, stale, or do not match."""

    status_code = 401
