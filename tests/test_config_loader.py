"""Tests for config loading, key conversion and environment overrides."""

import json
from pathlib import Path

import pytest

from x402pay.config.loader import (
    camel_to_snake,
    convert_keys,
    convert_to_camel,
    load_config,
    save_config,
    snake_to_camel,
)
from x402pay.config.schema import Config, PaymentConfig


def test_missing_file_gives_defaults(tmp_path: Path) -> None:
    config = load_config(tmp_path / "config.json")
    assert config.payment.validity_seconds == 3600
    assert config.payment.defer_validity is False
    assert config.payment.check_balance is True
    assert config.http.discovery_url is None
    assert config.http.payment_signature_header == "PAYMENT-SIGNATURE"
    assert config.balance.rpc_urls == {}


def test_load_camel_case_file(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text(json.dumps({
        "payment": {"validitySeconds": 600, "supportedNetworks": ["base", "avalanche"]},
        "http": {"discoveryUrl": "https://api.example.com/api/payment/requirements"},
        "balance": {"rpcUrls": {"base_sepolia": "https://sepolia.example.com"}},
    }))

    config = load_config(path)

    assert config.payment.validity_seconds == 600
    assert config.payment.supported_networks == ["base", "avalanche"]
    assert config.http.discovery_url == "https://api.example.com/api/payment/requirements"
    assert config.balance.rpc_urls == {"base_sepolia": "https://sepolia.example.com"}


def test_invalid_json_raises(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text("{not json")
    with pytest.raises(ValueError, match="Failed to load config"):
        load_config(path)


def test_non_object_root_raises(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text("[1, 2]")
    with pytest.raises(ValueError, match="JSON object"):
        load_config(path)


def test_save_then_load(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "config.json"
    config = Config(payment=PaymentConfig(validity_seconds=120, defer_validity=True))
    config.balance.rpc_urls["eip155:8453"] = "https://rpc.example.com"

    save_config(config, path)
    raw = json.loads(path.read_text())
    loaded = load_config(path)

    assert raw["payment"]["validitySeconds"] == 120
    assert raw["balance"]["rpcUrls"] == {"eip155:8453": "https://rpc.example.com"}
    assert loaded.payment.validity_seconds == 120
    assert loaded.payment.defer_validity is True
    assert loaded.balance.rpc_urls == {"eip155:8453": "https://rpc.example.com"}


def test_env_override(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("X402PAY_PAYMENT__VALIDITY_SECONDS", "900")
    monkeypatch.setenv("X402PAY_HTTP__DISCOVERY_URL", "https://discovery.example.com")

    config = load_config(tmp_path / "config.json")

    assert config.payment.validity_seconds == 900
    assert config.http.discovery_url == "https://discovery.example.com"


def test_validity_must_be_positive() -> None:
    with pytest.raises(ValueError):
        PaymentConfig(validity_seconds=0)


def test_key_conversion() -> None:
    assert camel_to_snake("requireSufficientBalance") == "require_sufficient_balance"
    assert snake_to_camel("payment_required_header") == "paymentRequiredHeader"
    data = {"balance": {"rpcUrls": {"base_sepolia": "x", "avalancheFuji": "y"}}}
    assert convert_keys(data) == {"balance": {"rpc_urls": {"base_sepolia": "x", "avalancheFuji": "y"}}}
    assert convert_to_camel({"balance": {"rpc_urls": {"base_sepolia": "x"}}}) == {
        "balance": {"rpcUrls": {"base_sepolia": "x"}}
    }
