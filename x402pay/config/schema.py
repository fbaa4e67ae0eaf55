"""Configuration schema using Pydantic.

Defaults for the payment negotiator, persisted to ~/.x402pay/config.json and
overridable from X402PAY_* environment variables.
"""

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings


class PaymentConfig(BaseModel):
    """Authorization and negotiation behaviour."""
    validity_seconds: int = Field(default=3600, gt=0)  # validBefore = now + this (capped by maxTimeoutSeconds)
    defer_validity: bool = False  # validAfter = now instead of 0
    check_balance: bool = True  # Read on-chain balance before signing (advisory)
    require_sufficient_balance: bool = False  # Refuse to sign when a known balance is too low
    auto_switch_chain: bool = True  # Ask the wallet to switch chains before signing
    supported_networks: list[str] = Field(default_factory=list)  # Restrict selection; empty = whole catalog


class HttpConfig(BaseModel):
    """Resource and discovery HTTP settings."""
    timeout: float = Field(default=30.0, gt=0)
    follow_redirects: bool = True
    discovery_url: str | None = None  # e.g. "https://api.example.com/api/payment/requirements"
    payment_required_header: str = "PAYMENT-REQUIRED"
    payment_signature_header: str = "PAYMENT-SIGNATURE"
    payment_response_header: str = "PAYMENT-RESPONSE"


class BalanceConfig(BaseModel):
    """On-chain balance reads."""
    timeout: float = Field(default=10.0, gt=0)
    rpc_urls: dict[str, str] = Field(default_factory=dict)  # Network key -> RPC URL override


class Config(BaseSettings):
    """Root configuration for x402pay."""
    payment: PaymentConfig = Field(default_factory=PaymentConfig)
    http: HttpConfig = Field(default_factory=HttpConfig)
    balance: BalanceConfig = Field(default_factory=BalanceConfig)

    model_config = ConfigDict(
        env_prefix="X402PAY_",
        env_nested_delimiter="__"
    )
