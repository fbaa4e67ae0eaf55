"""Tests for the network catalog."""

import pytest

from x402pay.financial.chains import ALL_CHAINS, BASE, DEFAULT_CATALOG, NetworkCatalog
from x402pay.utils.exceptions import UnknownNetwork


class TestNetworkCatalog:
    """Test key resolution"""

    @pytest.mark.parametrize(
        "key",
        [
            "base",
            "BASE",
            "eip155:8453",
            8453,
            "8453",
            "Base",
            "0x833589fcd6edb6e08f4c7c32d4f71b54bda02913",
            "https://mainnet.base.org/",
            "https://basescan.org",
        ],
    )
    def test_every_key_resolves_to_base(self, key):
        assert DEFAULT_CATALOG.resolve(key) is BASE

    def test_table_values(self):
        sepolia = DEFAULT_CATALOG.resolve("base-sepolia")
        assert sepolia.chain_id == 84532
        assert sepolia.is_testnet is True
        assert sepolia.usdc.name == "USDC"
        assert sepolia.usdc.version == "2"

        celo = DEFAULT_CATALOG.resolve("celo")
        assert celo.chain_id == 42220
        assert celo.usdc.name == "USDC"

        assert DEFAULT_CATALOG.resolve("celo-sepolia").chain_id == 11142220
        assert DEFAULT_CATALOG.resolve("avalanche-fuji").chain_id == 43113
        assert DEFAULT_CATALOG.resolve("ethereum").usdc.name == "USD Coin"

    def test_unknown_network(self):
        assert DEFAULT_CATALOG.get("polygon") is None
        assert DEFAULT_CATALOG.get(137) is None
        with pytest.raises(UnknownNetwork) as exc_info:
            DEFAULT_CATALOG.resolve("solana")
        assert exc_info.value.code == "UNKNOWN_NETWORK"

    def test_bool_is_not_a_chain_id(self):
        assert DEFAULT_CATALOG.get(True) is None

    def test_contains_and_len(self):
        assert "avalanche" in DEFAULT_CATALOG
        assert "eip155:1" in DEFAULT_CATALOG
        assert None not in DEFAULT_CATALOG
        assert len(DEFAULT_CATALOG) == len(ALL_CHAINS) == 7

    def test_networks_filter(self):
        mainnets = DEFAULT_CATALOG.networks(testnet=False)
        testnets = DEFAULT_CATALOG.networks(testnet=True)
        assert {c.name for c in mainnets} == {"avalanche", "base", "celo", "ethereum"}
        assert {c.name for c in testnets} == {"avalanche-fuji", "base-sepolia", "celo-sepolia"}

    def test_same_network(self):
        assert DEFAULT_CATALOG.same_network("base", "eip155:8453")
        assert not DEFAULT_CATALOG.same_network("base", "base-sepolia")
        assert DEFAULT_CATALOG.same_network("unknown", "UNKNOWN")

    def test_network_id_and_transaction_url(self):
        assert BASE.network_id == "eip155:8453"
        assert DEFAULT_CATALOG.transaction_url("base", "0xabc") == "https://basescan.org/tx/0xabc"


class TestCatalogConstruction:
    """Test catalog invariants"""

    def test_duplicate_chain_id_rejected(self):
        with pytest.raises(ValueError, match="Duplicate chain id"):
            NetworkCatalog([BASE, BASE])

    def test_rpc_overrides_return_new_catalog(self):
        custom = DEFAULT_CATALOG.with_rpc_overrides({"base": "https://rpc.example.com"})
        assert custom.resolve("base").rpc_url == "https://rpc.example.com"
        assert custom.resolve("https://rpc.example.com").chain_id == 8453
        assert DEFAULT_CATALOG.resolve("base").rpc_url == "https://mainnet.base.org"
        assert custom.resolve("celo") is DEFAULT_CATALOG.resolve("celo")

    def test_rpc_override_for_unknown_network(self):
        with pytest.raises(UnknownNetwork):
            DEFAULT_CATALOG.with_rpc_overrides({"polygon": "https://rpc.example.com"})

    def test_empty_overrides_keep_catalog(self):
        assert DEFAULT_CATALOG.with_rpc_overrides({}) is DEFAULT_CATALOG
