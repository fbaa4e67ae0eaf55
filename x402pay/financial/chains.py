"""
Network Catalog for x402 Payments

Static table of supported EVM networks and their USDC deployments. Any one
key (legacy name, CAIP-2 id, chain id, token address, RPC URL, explorer URL or
display name) resolves to the full ChainConfig.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Union

from x402pay.utils.exceptions import UnknownNetwork

USDC_DECIMALS = 6


@dataclass(frozen=True)
class TokenInfo:
    """Token contract information"""
    address: str
    symbol: str
    name: str
    decimals: int = USDC_DECIMALS
    version: str = "2"


@dataclass(frozen=True)
class ChainConfig:
    """Blockchain configuration"""
    name: str
    chain_id: int
    display_name: str
    rpc_url: str
    usdc: TokenInfo
    is_testnet: bool = False
    block_explorer: str = ""

    @property
    def network_id(self) -> str:
        """CAIP-2 identifier, e.g. eip155:8453"""
        return f"eip155:{self.chain_id}"

    def transaction_url(self, tx_hash: str) -> str:
        return f"{self.block_explorer}/tx/{tx_hash}"


AVALANCHE = ChainConfig(
    name="avalanche",
    chain_id=43114,
    display_name="Avalanche",
    rpc_url="https://api.avax.network/ext/bc/C/rpc",
    usdc=TokenInfo(
        address="0xB97EF9Ef8734C71904D8002F8b6Bc66Dd9c48a6E",
        symbol="USDC",
        name="USD Coin",
    ),
    block_explorer="https://snowtrace.io",
)

AVALANCHE_FUJI = ChainConfig(
    name="avalanche-fuji",
    chain_id=43113,
    display_name="Avalanche Fuji",
    rpc_url="https://api.avax-test.network/ext/bc/C/rpc",
    usdc=TokenInfo(
        address="0x5425890298aed601595a70AB815c96711a31Bc65",
        symbol="USDC",
        name="USD Coin",
    ),
    is_testnet=True,
    block_explorer="https://testnet.snowtrace.io",
)

BASE = ChainConfig(
    name="base",
    chain_id=8453,
    display_name="Base",
    rpc_url="https://mainnet.base.org",
    usdc=TokenInfo(
        address="0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
        symbol="USDC",
        name="USD Coin",
    ),
    block_explorer="https://basescan.org",
)

BASE_SEPOLIA = ChainConfig(
    name="base-sepolia",
    chain_id=84532,
    display_name="Base Sepolia",
    rpc_url="https://sepolia.base.org",
    usdc=TokenInfo(
        address="0x036CbD53842c5426634e7929541eC2318f3dCF7e",
        symbol="USDC",
        name="USDC",
    ),
    is_testnet=True,
    block_explorer="https://sepolia.basescan.org",
)

CELO = ChainConfig(
    name="celo",
    chain_id=42220,
    display_name="Celo",
    rpc_url="https://forno.celo.org",
    usdc=TokenInfo(
        address="0xcebA9300f2b948710d2653dD7B07f33A8B32118C",
        symbol="USDC",
        name="USDC",
    ),
    block_explorer="https://celoscan.io",
)

CELO_SEPOLIA = ChainConfig(
    name="celo-sepolia",
    chain_id=11142220,
    display_name="Celo Sepolia",
    rpc_url="https://forno.celo-sepolia.celo-testnet.org",
    usdc=TokenInfo(
        address="0x2F25deB3848C207fc8E0c34035B3Ba7fC157602B",
        symbol="USDC",
        name="USDC",
    ),
    is_testnet=True,
    block_explorer="https://celo-sepolia.blockscout.com",
)

ETHEREUM = ChainConfig(
    name="ethereum",
    chain_id=1,
    display_name="Ethereum",
    rpc_url="https://eth.llamarpc.com",
    usdc=TokenInfo(
        address="0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48",
        symbol="USDC",
        name="USD Coin",
    ),
    block_explorer="https://etherscan.io",
)

ALL_CHAINS = (
    AVALANCHE,
    AVALANCHE_FUJI,
    BASE,
    BASE_SEPOLIA,
    CELO,
    CELO_SEPOLIA,
    ETHEREUM,
)

NetworkKey = Union[str, int]


class NetworkCatalog:
    """Immutable lookup of supported networks"""

    def __init__(self, chains: Iterable[ChainConfig] = ALL_CHAINS):
        self._chains: tuple[ChainConfig, ...] = tuple(chains)
        self._by_chain_id: Dict[int, ChainConfig] = {}
        self._by_key: Dict[str, ChainConfig] = {}
        for chain in self._chains:
            if chain.chain_id in self._by_chain_id:
                raise ValueError(f"Duplicate chain id in catalog: {chain.chain_id}")
            self._by_chain_id[chain.chain_id] = chain
            keys = [
                chain.name,
                chain.network_id,
                chain.display_name,
                chain.usdc.address,
                chain.rpc_url,
                chain.block_explorer,
            ]
            for key in keys:
                if not key:
                    continue
                normalized = self._normalize(key)
                existing = self._by_key.get(normalized)
                if existing is not None and existing is not chain:
                    raise ValueError(f"Catalog key {key!r} maps to both {existing.name} and {chain.name}")
                self._by_key[normalized] = chain

    @staticmethod
    def _normalize(key: str) -> str:
        return key.strip().lower().rstrip("/")

    def __iter__(self) -> Iterator[ChainConfig]:
        return iter(self._chains)

    def __len__(self) -> int:
        return len(self._chains)

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, (str, int)):
            return False
        return self.get(key) is not None

    def get(self, key: NetworkKey) -> Optional[ChainConfig]:
        """Resolve a key to its chain, or None when unknown"""
        if isinstance(key, bool):
            return None
        if isinstance(key, int):
            return self._by_chain_id.get(key)
        normalized = self._normalize(key)
        if normalized.isdigit():
            return self._by_chain_id.get(int(normalized))
        return self._by_key.get(normalized)

    def resolve(self, key: NetworkKey) -> ChainConfig:
        """Resolve a key to its chain, raising UnknownNetwork when absent"""
        chain = self.get(key)
        if chain is None:
            raise UnknownNetwork(key)
        return chain

    def networks(self, testnet: Optional[bool] = None) -> List[ChainConfig]:
        """All chains, optionally filtered to mainnets or testnets"""
        if testnet is None:
            return list(self._chains)
        return [c for c in self._chains if c.is_testnet == testnet]

    def with_rpc_overrides(self, rpc_urls: Mapping[str, str]) -> NetworkCatalog:
        """New catalog whose RPC endpoints are replaced for the given network keys"""
        if not rpc_urls:
            return self
        overrides: Dict[int, str] = {}
        for key, url in rpc_urls.items():
            if url:
                overrides[self.resolve(key).chain_id] = url
        return NetworkCatalog(
            replace(chain, rpc_url=overrides[chain.chain_id]) if chain.chain_id in overrides else chain
            for chain in self._chains
        )

    def transaction_url(self, network: NetworkKey, tx_hash: str) -> str:
        return self.resolve(network).transaction_url(tx_hash)

    def same_network(self, a: NetworkKey, b: NetworkKey) -> bool:
        """True when both keys resolve to the same chain"""
        chain_a = self.get(a)
        chain_b = self.get(b)
        if chain_a is None or chain_b is None:
            return str(a).strip().lower() == str(b).strip().lower()
        return chain_a.chain_id == chain_b.chain_id


DEFAULT_CATALOG = NetworkCatalog()
