"""
Authorization Builder

Builds the EIP-712 domain and TransferWithAuthorization (EIP-3009) message for
a selected payment requirement. Signing is left to the wallet capability.
"""

from __future__ import annotations

import re
import secrets
import time
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Optional, Tuple

from x402pay.financial.chains import DEFAULT_CATALOG, USDC_DECIMALS, ChainConfig, NetworkCatalog
from x402pay.financial.eip712 import EIP712Domain, EIP712Signer, TypedDataField, TypeMap
from x402pay.financial.envelope import PaymentAuthorization, PaymentEnvelope
from x402pay.financial.requirements import PaymentRequirement
from x402pay.identity.evm import is_address
from x402pay.utils.exceptions import UnknownNetwork, ValidationError, WrongActiveChain

PRIMARY_TYPE = "TransferWithAuthorization"

TRANSFER_WITH_AUTHORIZATION_TYPES: TypeMap = {
    PRIMARY_TYPE: [
        TypedDataField("from", "address"),
        TypedDataField("to", "address"),
        TypedDataField("value", "uint256"),
        TypedDataField("validAfter", "uint256"),
        TypedDataField("validBefore", "uint256"),
        TypedDataField("nonce", "bytes32"),
    ]
}

DEFAULT_VALIDITY_SECONDS = 3600

_PRICE_PATTERN = re.compile(r"^\$?\s*(\d+(\.\d+)?)$")


def parse_price_to_atomic(price: str, decimals: int = USDC_DECIMALS) -> int:
    """
    Convert a decimal price ("$0.01", "0.01") to atomic units.

    Raises ValidationError for malformed text, non-positive amounts or more
    fractional digits than the token supports.
    """
    match = _PRICE_PATTERN.match(price.strip()) if isinstance(price, str) else None
    if not match:
        raise ValidationError(f"Invalid price: {price!r}", field="price")
    try:
        amount = Decimal(match.group(1))
        scaled = amount * (Decimal(10) ** decimals)
        integral = scaled.to_integral_exact()
    except InvalidOperation as e:
        raise ValidationError(f"Invalid price: {price!r}", field="price") from e
    if integral != scaled:
        raise ValidationError(
            f"Price {price!r} cannot be represented with {decimals} decimals", field="price"
        )
    atomic = int(integral)
    if atomic <= 0:
        raise ValidationError("Payment amount must be greater than zero", field="price")
    return atomic


def format_atomic_amount(atomic: int, decimals: int = USDC_DECIMALS) -> str:
    """Exact decimal string with all token decimals, e.g. 10000 -> "0.010000"."""
    sign = "-" if atomic < 0 else ""
    whole, fraction = divmod(abs(atomic), 10 ** decimals)
    return f"{sign}{whole}.{fraction:0{decimals}d}"


def format_price(atomic: int, decimals: int = USDC_DECIMALS) -> str:
    """Display price with trailing zeros trimmed, keeping cents: 10000 -> "$0.01"."""
    whole, fraction = format_atomic_amount(atomic, decimals).split(".")
    fraction = fraction.rstrip("0").ljust(2, "0")
    return f"${whole}.{fraction}"


@dataclass(frozen=True)
class TypedDataRequest:
    """Everything a wallet needs for eth_signTypedData_v4"""
    network: str
    domain: EIP712Domain
    types: TypeMap
    primary_type: str
    authorization: PaymentAuthorization

    @property
    def message(self) -> Dict[str, Any]:
        return self.authorization.to_message()

    def to_json(self) -> Dict[str, Any]:
        return EIP712Signer.to_typed_data_json(self.domain, self.types, self.primary_type, self.message)

    def digest(self) -> bytes:
        return EIP712Signer.digest(self.domain, self.types, self.primary_type, self.message)

    def envelope(self, signature: str) -> PaymentEnvelope:
        return PaymentEnvelope(network=self.network, authorization=self.authorization, signature=signature)


def _random_nonce() -> bytes:
    return secrets.token_bytes(32)


class AuthorizationBuilder:
    """Builds TransferWithAuthorization typed data for a requirement"""

    def __init__(
        self,
        catalog: NetworkCatalog = DEFAULT_CATALOG,
        validity_seconds: int = DEFAULT_VALIDITY_SECONDS,
        defer_validity: bool = False,
        clock: Callable[[], float] = time.time,
        nonce_factory: Callable[[], bytes] = _random_nonce,
    ):
        """
        Args:
            catalog: Network catalog used to resolve chain id and token contract
            validity_seconds: Default lifetime of an authorization
            defer_validity: Use validAfter=now instead of 0
            clock: Unix time source
            nonce_factory: Source of 32 random bytes per authorization
        """
        if validity_seconds <= 0:
            raise ValueError("validity_seconds must be positive")
        self.catalog = catalog
        self.validity_seconds = validity_seconds
        self.defer_validity = defer_validity
        self._clock = clock
        self._nonce_factory = nonce_factory

    def resolve_amount(self, requirement: PaymentRequirement) -> int:
        """Explicit atomic amount wins; otherwise parse the decimal price."""
        if requirement.max_amount_required is not None:
            return int(requirement.max_amount_required)
        return parse_price_to_atomic(requirement.price or "")

    def resolve_window(self, requirement: PaymentRequirement) -> Tuple[int, int]:
        now = int(self._clock())
        lifetime = self.validity_seconds
        if requirement.max_timeout_seconds is not None:
            lifetime = min(lifetime, requirement.max_timeout_seconds)
        valid_after = now if self.defer_validity else 0
        return valid_after, now + lifetime

    def resolve_chain(self, requirement: PaymentRequirement) -> ChainConfig:
        chain = self.catalog.resolve(requirement.network)
        if requirement.asset.lower() != chain.usdc.address.lower():
            raise UnknownNetwork(
                requirement.asset,
                f"Asset {requirement.asset} is not the {chain.usdc.symbol} contract on {chain.display_name}",
            )
        return chain

    def build_domain(self, requirement: PaymentRequirement, chain: Optional[ChainConfig] = None) -> EIP712Domain:
        chain = chain or self.resolve_chain(requirement)
        return EIP712Domain(
            name=requirement.extra.token_name or chain.usdc.name,
            version=requirement.extra.token_version or chain.usdc.version,
            chain_id=chain.chain_id,
            verifying_contract=chain.usdc.address,
        )

    def build(
        self,
        requirement: PaymentRequirement,
        payer: str,
        active_chain_id: Optional[int] = None,
    ) -> TypedDataRequest:
        """
        Build the typed data for one signature request.

        Args:
            requirement: Selected accept option
            payer: Wallet address that will sign
            active_chain_id: Wallet's current chain; must match the requirement when given

        Returns:
            TypedDataRequest with a fresh nonce and validity window
        """
        if not is_address(payer):
            raise ValidationError(f"Invalid payer address: {payer}", field="payer")
        chain = self.resolve_chain(requirement)
        if active_chain_id is not None and active_chain_id != chain.chain_id:
            raise WrongActiveChain(chain.display_name, chain.chain_id, active_chain_id)

        valid_after, valid_before = self.resolve_window(requirement)
        authorization = PaymentAuthorization(
            from_address=payer,
            to=requirement.pay_to,
            value=self.resolve_amount(requirement),
            valid_after=valid_after,
            valid_before=valid_before,
            nonce="0x" + self._nonce_factory().hex(),
        )
        return TypedDataRequest(
            network=requirement.network,
            domain=self.build_domain(requirement, chain),
            types=TRANSFER_WITH_AUTHORIZATION_TYPES,
            primary_type=PRIMARY_TYPE,
            authorization=authorization,
        )
