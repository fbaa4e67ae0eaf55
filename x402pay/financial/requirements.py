"""
Payment Requirements Schema

Strict, versioned parser for the x402 v2 requirements document, used both for
the PAYMENT-REQUIRED header of a 402 response and for the discovery endpoint.
Unknown versions or malformed options raise MalformedRequirements.
"""

from __future__ import annotations

from typing import Any, Literal, Mapping, Optional, Tuple

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from x402pay.financial.envelope import (
    EXACT_SCHEME,
    X402_VERSION,
    decode_base64_json,
    encode_base64_json,
)
from x402pay.utils.exceptions import MalformedRequirements

ADDRESS_PATTERN = r"^0x[0-9a-fA-F]{40}$"
ATOMIC_AMOUNT_PATTERN = r"^[1-9][0-9]*$"  # positive, no leading zeros


class RequirementExtra(BaseModel):
    """Token metadata attached to an accept option."""
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="allow")

    token_name: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("name", "tokenName", "token_name"),
        serialization_alias="name",
    )
    token_version: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("version", "tokenVersion", "token_version"),
        serialization_alias="version",
    )
    legacy_network_name: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("networkName", "legacyNetworkName", "legacy_network_name"),
        serialization_alias="networkName",
    )


class PaymentRequirement(BaseModel):
    """One accept option: how much to pay, to whom, on which network."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    scheme: str
    network: str = Field(min_length=1)
    max_amount_required: Optional[str] = Field(
        default=None, alias="maxAmountRequired", pattern=ATOMIC_AMOUNT_PATTERN
    )
    price: Optional[str] = None
    resource: str = ""
    description: str = ""
    mime_type: Optional[str] = Field(default=None, alias="mimeType")
    pay_to: str = Field(alias="payTo", pattern=ADDRESS_PATTERN)
    asset: str = Field(pattern=ADDRESS_PATTERN)
    max_timeout_seconds: Optional[int] = Field(default=None, alias="maxTimeoutSeconds", gt=0)
    extra: RequirementExtra = Field(default_factory=RequirementExtra)

    @field_validator("max_amount_required", mode="before")
    @classmethod
    def integer_amount_as_string(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @model_validator(mode="after")
    def require_amount(self) -> PaymentRequirement:
        if self.max_amount_required is None and not self.price:
            raise ValueError("accept option needs maxAmountRequired or price")
        return self

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class PaymentRequiredDocument(BaseModel):
    """x402 v2 requirements document: ordered accept options plus an optional default network."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    x402_version: Literal[2] = Field(default=X402_VERSION, alias="x402Version")
    accepts: Tuple[PaymentRequirement, ...] = Field(min_length=1)
    default_network: Optional[str] = Field(default=None, alias="defaultNetwork")
    error: Optional[str] = None

    @model_validator(mode="after")
    def require_exact_option(self) -> PaymentRequiredDocument:
        if not any(option.scheme == EXACT_SCHEME for option in self.accepts):
            raise ValueError(f"no '{EXACT_SCHEME}' accept option")
        return self

    @property
    def exact_accepts(self) -> Tuple[PaymentRequirement, ...]:
        return tuple(option for option in self.accepts if option.scheme == EXACT_SCHEME)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


def parse_requirements_document(data: Any) -> PaymentRequiredDocument:
    """Validate a decoded requirements document, raising MalformedRequirements on any mismatch."""
    if isinstance(data, PaymentRequiredDocument):
        return data
    if not isinstance(data, Mapping):
        raise MalformedRequirements(f"Payment requirements must be a JSON object, got {type(data).__name__}")
    try:
        return PaymentRequiredDocument.model_validate(dict(data))
    except PydanticValidationError as e:
        raise MalformedRequirements(
            f"Invalid payment requirements ({e.error_count()} error(s))",
            errors=e.errors(include_url=False, include_context=False),
        ) from e


def decode_payment_required_header(value: str) -> PaymentRequiredDocument:
    """Decode and validate a PAYMENT-REQUIRED header value"""
    try:
        data = decode_base64_json(value)
    except ValueError as e:
        raise MalformedRequirements(str(e)) from e
    return parse_requirements_document(data)


def encode_payment_required_header(document: PaymentRequiredDocument) -> str:
    return encode_base64_json(document.to_wire())
