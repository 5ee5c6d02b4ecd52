"""Chain definitions for the supported EVM networks."""

from __future__ import annotations

from dataclasses import dataclass, replace


@dataclass(frozen=True)
class Chain:
    """An EVM network plus the stable token the proxy settles in."""

    name: str
    chain_id: int
    rpc_url: str
    explorer_url: str
    native_symbol: str
    stable_symbol: str
    stable_address: str
    native_decimals: int = 18
    stable_decimals: int = 6
    # EIP-712 domain of the stable token (used for EIP-3009 authorizations)
    stable_domain_name: str = "USD Coin"
    stable_domain_version: str = "2"

    @property
    def x402_network(self) -> str:
        """Network name used by x402 v1 payment requirements."""
        return self.name

    @property
    def caip2_network(self) -> str:
        """CAIP-2 network id used by x402 v2 payment requirements."""
        return f"eip155:{self.chain_id}"

    def with_rpc_url(self, rpc_url: str | None) -> Chain:
        """Return a copy pointing at a different RPC endpoint."""
        if not rpc_url or rpc_url == self.rpc_url:
            return self
        return replace(self, rpc_url=rpc_url)


CHAINS: dict[str, Chain] = {
    "base": Chain(
        name="base",
        chain_id=8453,
        rpc_url="https://mainnet.base.org",
        explorer_url="https://basescan.org",
        native_symbol="ETH",
        stable_symbol="USDC",
        stable_address="0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
    ),
    "base-sepolia": Chain(
        name="base-sepolia",
        chain_id=84532,
        rpc_url="https://sepolia.base.org",
        explorer_url="https://sepolia.basescan.org",
        native_symbol="ETH",
        stable_symbol="USDC",
        stable_address="0x036CbD53842c5426634e7929541eC2318f3dCF7e",
        stable_domain_name="USDC",
    ),
}


def get_chain(name: str) -> Chain:
    """Get a chain by name. Raises ``KeyError`` if not found."""
    if name not in CHAINS:
        raise KeyError(
            f"Unknown chain '{name}'. Available: {list_chain_names()}"
        )
    return CHAINS[name]


def list_chain_names() -> list[str]:
    """Return the names of all supported chains."""
    return list(CHAINS.keys())
