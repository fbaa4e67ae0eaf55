"""Pytest fixtures shared by the x402pay tests."""

from typing import Any, Dict, Optional

import pytest

from x402pay.financial.requirements import PaymentRequiredDocument, encode_payment_required_header
from x402pay.financial.wallet import LocalWallet

# Well-known development key (Hardhat account #0); never funded on mainnet.
TEST_PRIVATE_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
TEST_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"

PAY_TO = "0x209693Bc6afc0C5328bA36FaF03C514EF312287C"
BASE_USDC = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"
BASE_SEPOLIA_USDC = "0x036CbD53842c5426634e7929541eC2318f3dCF7e"
AVALANCHE_USDC = "0xB97EF9Ef8734C71904D8002F8b6Bc66Dd9c48a6E"
CELO_USDC = "0xcebA9300f2b948710d2653dD7B07f33A8B32118C"

FIXED_NOW = 1_700_000_000


def make_option(
    network: str = "eip155:8453",
    asset: str = BASE_USDC,
    amount: Optional[str] = "10000",
    **overrides: Any,
) -> Dict[str, Any]:
    option: Dict[str, Any] = {
        "scheme": "exact",
        "network": network,
        "resource": "https://api.example.com/api/ai/summarize",
        "description": "Summarize text",
        "mimeType": "application/json",
        "payTo": PAY_TO,
        "asset": asset,
        "maxTimeoutSeconds": 300,
    }
    if amount is not None:
        option["maxAmountRequired"] = amount
    option.update(overrides)
    return option


def make_document(*options: Dict[str, Any], default_network: Optional[str] = None) -> Dict[str, Any]:
    doc: Dict[str, Any] = {"x402Version": 2, "accepts": list(options) or [make_option()]}
    if default_network:
        doc["defaultNetwork"] = default_network
    return doc


def make_header(*options: Dict[str, Any], default_network: Optional[str] = None) -> str:
    document = PaymentRequiredDocument.model_validate(make_document(*options, default_network=default_network))
    return encode_payment_required_header(document)


@pytest.fixture
def wallet() -> LocalWallet:
    return LocalWallet.from_private_key(TEST_PRIVATE_KEY, chain_id=8453)


@pytest.fixture
def clock():
    return lambda: FIXED_NOW
