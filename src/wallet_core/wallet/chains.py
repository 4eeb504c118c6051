"""Chain definitions for supported EVM networks."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class Token:
    """An ERC-20 token deployed on one chain."""

    symbol: str
    address: str
    decimals: int = 18


@dataclass(frozen=True)
class Chain:
    """An EVM-compatible blockchain network."""

    name: str
    chain_id: int
    rpc_url: str
    native_symbol: str
    explorer_url: str
    explorer_api_url: str = ""
    decimals: int = 18
    tokens: tuple[Token, ...] = field(default_factory=tuple)
    entry_point: str = ""
    testnet: bool = False

    def tx_url(self, tx_hash: str) -> str:
        return f"{self.explorer_url}/tx/{tx_hash}" if self.explorer_url else ""

    def address_url(self, address: str) -> str:
        return f"{self.explorer_url}/address/{address}" if self.explorer_url else ""

    def find_token(self, token: str | None) -> Token | None:
        """Resolve a token by symbol or contract address.

        ``None``, ``"native"`` and the native symbol all mean the chain's own
        asset and return ``None``. Raises ``KeyError`` for anything unknown.
        """
        if token is None:
            return None
        needle = token.strip()
        if not needle or needle.lower() == "native" or needle.upper() == self.native_symbol.upper():
            return None
        for t in self.tokens:
            if t.symbol.upper() == needle.upper() or t.address.lower() == needle.lower():
                return t
        raise KeyError(
            f"Unknown token '{token}' on {self.name}. "
            f"Available: {[t.symbol for t in self.tokens]}"
        )


CHAINS: dict[str, Chain] = {
    "sepolia": Chain(
        name="sepolia",
        chain_id=11155111,
        rpc_url="https://ethereum-sepolia-rpc.publicnode.com",
        native_symbol="ETH",
        explorer_url="https://sepolia.etherscan.io",
        explorer_api_url="https://api-sepolia.etherscan.io/api",
        testnet=True,
    ),
    "ethereum": Chain(
        name="ethereum",
        chain_id=1,
        rpc_url="https://eth.llamarpc.com",
        native_symbol="ETH",
        explorer_url="https://etherscan.io",
        explorer_api_url="https://api.etherscan.io/api",
    ),
    "base": Chain(
        name="base",
        chain_id=8453,
        rpc_url="https://mainnet.base.org",
        native_symbol="ETH",
        explorer_url="https://basescan.org",
        explorer_api_url="https://api.basescan.org/api",
    ),
    "arbitrum": Chain(
        name="arbitrum",
        chain_id=42161,
        rpc_url="https://arb1.arbitrum.io/rpc",
        native_symbol="ETH",
        explorer_url="https://arbiscan.io",
        explorer_api_url="https://api.arbiscan.io/api",
    ),
    "polygon": Chain(
        name="polygon",
        chain_id=137,
        rpc_url="https://polygon-rpc.com",
        native_symbol="POL",
        explorer_url="https://polygonscan.com",
        explorer_api_url="https://api.polygonscan.com/api",
    ),
}


def get_chain(name: str) -> Chain:
    """Get a built-in chain by name. Raises ``KeyError`` if not found."""
    if name not in CHAINS:
        raise KeyError(
            f"Unknown chain '{name}'. Available: {list_chain_names()}"
        )
    return CHAINS[name]


def list_chain_names() -> list[str]:
    """Return the names of all built-in chains."""
    return list(CHAINS.keys())
