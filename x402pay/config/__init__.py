"""Configuration module for x402pay."""

from x402pay.config.loader import load_config, get_config_path, save_config
from x402pay.config.schema import Config, PaymentConfig, HttpConfig, BalanceConfig

__all__ = [
    "Config",
    "PaymentConfig",
    "HttpConfig",
    "BalanceConfig",
    "load_config",
    "get_config_path",
    "save_config",
]
