"""Account, chain access, and ledger operations for the signing proxy.

The proxy holds exactly one private key in memory. Everything here works on
that single account against a single configured EVM chain: reading the
native and stable-token balances, and sending confirmed transfers.
"""

from clawtrl_wallet.wallet.account import AccountIdentity
from clawtrl_wallet.wallet.chains import Chain, get_chain
from clawtrl_wallet.wallet.manager import TransferResult, WalletManager
from clawtrl_wallet.wallet.provider import Web3Provider

__all__ = [
    "AccountIdentity",
    "Chain",
    "TransferResult",
    "WalletManager",
    "Web3Provider",
    "get_chain",
]
