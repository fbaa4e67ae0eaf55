"""
x402 Payment Protocol Support

Pays for HTTP 402 gated resources with USDC.
Based on EIP-3009 (TransferWithAuthorization) signed as EIP-712 typed data.
"""

from x402pay.financial.authorization import AuthorizationBuilder, TypedDataRequest, parse_price_to_atomic
from x402pay.financial.chains import DEFAULT_CATALOG, ChainConfig, NetworkCatalog, TokenInfo
from x402pay.financial.eip712 import EIP712Domain, EIP712Signer, TypedDataField
from x402pay.financial.envelope import PaymentAuthorization, PaymentEnvelope, SettlementProof
from x402pay.financial.negotiator import NegotiationState, PaymentNegotiator, X402PaymentResult
from x402pay.financial.pending import PendingAction, PendingActionStore, ProcessingGuard
from x402pay.financial.requirements import PaymentRequiredDocument, PaymentRequirement
from x402pay.financial.resources import parse_resource_result, resource_id_from_url
from x402pay.financial.retrier import ActionRetrier, RetryOutcome
from x402pay.financial.session import PaymentSession, SessionResponse
from x402pay.financial.token_balance import BalanceResult, TokenBalanceChecker
from x402pay.financial.wallet import LocalWallet, WalletCapability

__all__ = [
    "AuthorizationBuilder",
    "TypedDataRequest",
    "parse_price_to_atomic",
    "DEFAULT_CATALOG",
    "ChainConfig",
    "NetworkCatalog",
    "TokenInfo",
    "EIP712Domain",
    "EIP712Signer",
    "TypedDataField",
    "PaymentAuthorization",
    "PaymentEnvelope",
    "SettlementProof",
    "NegotiationState",
    "PaymentNegotiator",
    "X402PaymentResult",
    "PendingAction",
    "PendingActionStore",
    "ProcessingGuard",
    "PaymentRequiredDocument",
    "PaymentRequirement",
    "parse_resource_result",
    "resource_id_from_url",
    "ActionRetrier",
    "RetryOutcome",
    "PaymentSession",
    "SessionResponse",
    "BalanceResult",
    "TokenBalanceChecker",
    "LocalWallet",
    "WalletCapability",
]
