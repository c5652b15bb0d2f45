from __future__ import annotations
from dataclasses import dataclass

from .errors import ValidationError

# ENS lives on mainnet; name lookups always go there whatever the tx's chain.
REFERENCE_CHAIN_ID = 1


@dataclass(slots=True, frozen=True)
class ChainConfig:
    chain_id: int
    name: str
    native_symbol: str
    rpc_urls: tuple[str, ...]
    explorer: str
    coingecko_platform: str
    coingecko_native_id: str
    defillama_chain: str
    alchemy_network: str | None = None
    wrapped_native: str | None = None

    def explorer_tx_url(self, tx_hash: str) -> str:
        return f"{self.explorer}/tx/{tx_hash}"

    def alchemy_url(self, alchemy_key: str) -> str | None:
        if not self.alchemy_network:
            return None
        return f"https://{self.alchemy_network}.g.alchemy.com/v2/{alchemy_key}"

    def endpoints(self, alchemy_key: str | None = None) -> list[str]:
        """Ordered RPC endpoints; a keyed Alchemy endpoint goes first when available."""
        urls = list(self.rpc_urls)
        keyed = self.alchemy_url(alchemy_key) if alchemy_key else None
        if keyed:
            urls.insert(0, keyed)
        return urls


CHAINS: dict[int, ChainConfig] = {c.chain_id: c for c in (
    ChainConfig(1, "Ethereum Mainnet", "ETH",
                ("https://eth.llamarpc.com", "https://ethereum-rpc.publicnode.com"),
                "https://etherscan.io", "ethereum", "ethereum", "ethereum",
                "eth-mainnet", "0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2"),
    ChainConfig(8453, "Base Mainnet", "ETH",
                ("https://mainnet.base.org", "https://base-rpc.publicnode.com"),
                "https://basescan.org", "base", "ethereum", "base",
                "base-mainnet", "0x4200000000000000000000000000000000000006"),
    ChainConfig(137, "Polygon", "MATIC",
                ("https://polygon-rpc.com", "https://polygon-bor-rpc.publicnode.com"),
                "https://polygonscan.com", "polygon-pos", "matic-network", "polygon",
                "polygon-mainnet", "0x0d500b1d8e8ef31e21c99d1db9a6444d3adf1270"),
    ChainConfig(11155111, "Sepolia", "ETH",
                ("https://rpc.sepolia.org", "https://ethereum-sepolia-rpc.publicnode.com"),
                "https://sepolia.etherscan.io", "ethereum", "ethereum", "ethereum",
                "eth-sepolia", None),
    ChainConfig(42161, "Arbitrum One", "ETH",
                ("https://arb1.arbitrum.io/rpc", "https://arbitrum-one-rpc.publicnode.com"),
                "https://arbiscan.io", "arbitrum-one", "ethereum", "arbitrum",
                "arb-mainnet", "0x82af49447d8a07e3bd95bd0d56f35241523fbab1"),
    ChainConfig(10, "Optimism", "ETH",
                ("https://mainnet.optimism.io", "https://optimism-rpc.publicnode.com"),
                "https://optimistic.etherscan.io", "optimistic-ethereum", "ethereum", "optimism",
                "opt-mainnet", "0x4200000000000000000000000000000000000006"),
    ChainConfig(56, "BNB Smart Chain", "BNB",
                ("https://bsc-dataseed.binance.org", "https://bsc-rpc.publicnode.com"),
                "https://bscscan.com", "binance-smart-chain", "binancecoin", "bsc",
                None, "0xbb4cdb9cbd36b01bd1cbaebf2de08d9173bc095c"),
    ChainConfig(43114, "Avalanche C-Chain", "AVAX",
                ("https://api.avax.network/ext/bc/C/rpc", "https://avalanche-c-chain-rpc.publicnode.com"),
                "https://snowtrace.io", "avalanche", "avalanche-2", "avax",
                None, "0xb31f66aa3c1e785363f0875a1b74e27b85fd66c7"),
)}


def get_chain(chain_id: int) -> ChainConfig:
    try:
        return CHAINS[int(chain_id)]
    except (KeyError, TypeError, ValueError):
        raise ValidationError(f"unsupported chain id: {chain_id!r}") from None
