"""Payment-capable outbound fetch (x402)."""

from clawtrl_wallet.payments.fetch import FetchResult, PaymentFetcher
from clawtrl_wallet.payments.x402 import (
    PaymentAdapter,
    X402V1Adapter,
    X402V2Adapter,
    select_adapters,
)

__all__ = [
    "FetchResult",
    "PaymentAdapter",
    "PaymentFetcher",
    "X402V1Adapter",
    "X402V2Adapter",
    "select_adapters",
]
