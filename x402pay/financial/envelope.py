"""
x402 v2 Wire Format

Header names and codecs for the three x402 headers:

- PAYMENT-REQUIRED:  base64 JSON requirements document on a 402 response
- PAYMENT-SIGNATURE: base64 JSON {x402Version, scheme, network, payload} on the paid retry
- PAYMENT-RESPONSE:  base64 JSON settlement proof on the paid response
"""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from loguru import logger

X402_VERSION = 2
EXACT_SCHEME = "exact"

PAYMENT_REQUIRED_HEADER = "PAYMENT-REQUIRED"
PAYMENT_SIGNATURE_HEADER = "PAYMENT-SIGNATURE"
PAYMENT_RESPONSE_HEADER = "PAYMENT-RESPONSE"


def encode_base64_json(data: Any) -> str:
    return base64.b64encode(json.dumps(data, separators=(",", ":")).encode("utf-8")).decode("ascii")


def decode_base64_json(value: str) -> Any:
    """Decode a base64 JSON header value; raises ValueError on any malformed input."""
    try:
        raw = base64.b64decode(value.strip(), validate=True)
        return json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValueError(f"Header is not base64-encoded JSON: {e}") from e


_AUTHORIZATION_FIELDS = ("from", "to", "value", "validAfter", "validBefore", "nonce")


@dataclass(frozen=True)
class PaymentAuthorization:
    """EIP-3009 TransferWithAuthorization message"""
    from_address: str
    to: str
    value: int
    valid_after: int
    valid_before: int
    nonce: str

    def to_message(self) -> Dict[str, Any]:
        """Signing form: integers stay integers"""
        return {
            "from": self.from_address,
            "to": self.to,
            "value": self.value,
            "validAfter": self.valid_after,
            "validBefore": self.valid_before,
            "nonce": self.nonce,
        }

    def to_transport(self) -> Dict[str, str]:
        """Transport form: every field is a string"""
        return {k: str(v) for k, v in self.to_message().items()}

    @classmethod
    def from_transport(cls, data: Mapping[str, Any]) -> PaymentAuthorization:
        missing = [name for name in _AUTHORIZATION_FIELDS if name not in data]
        if missing:
            raise ValueError(f"Authorization is missing {', '.join(missing)}")
        return cls(
            from_address=str(data["from"]),
            to=str(data["to"]),
            value=int(data["value"]),
            valid_after=int(data["validAfter"]),
            valid_before=int(data["validBefore"]),
            nonce=str(data["nonce"]),
        )


@dataclass(frozen=True)
class PaymentEnvelope:
    """Signed authorization ready for submission"""
    network: str
    authorization: PaymentAuthorization
    signature: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "network": self.network,
            "authorization": self.authorization.to_transport(),
            "signature": self.signature,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PaymentEnvelope:
        if not isinstance(data.get("authorization"), Mapping):
            raise ValueError("Envelope is missing authorization")
        if not data.get("network") or not data.get("signature"):
            raise ValueError("Envelope is missing network or signature")
        return cls(
            network=str(data["network"]),
            authorization=PaymentAuthorization.from_transport(data["authorization"]),
            signature=str(data["signature"]),
        )


def encode_payment_header(envelope: PaymentEnvelope) -> str:
    """Build the PAYMENT-SIGNATURE header value"""
    return encode_base64_json({
        "x402Version": X402_VERSION,
        "scheme": EXACT_SCHEME,
        "network": envelope.network,
        "payload": envelope.to_dict(),
    })


def decode_payment_header(value: str) -> PaymentEnvelope:
    """Parse a PAYMENT-SIGNATURE header value back into an envelope"""
    data = decode_base64_json(value)
    if not isinstance(data, dict):
        raise ValueError("Payment header must encode a JSON object")
    if data.get("x402Version") != X402_VERSION or data.get("scheme") != EXACT_SCHEME:
        raise ValueError(
            f"Unsupported payment header version/scheme: {data.get('x402Version')}/{data.get('scheme')}"
        )
    payload = data.get("payload")
    if not isinstance(payload, dict):
        raise ValueError("Payment header is missing payload")
    return PaymentEnvelope.from_dict(payload)


@dataclass(frozen=True)
class SettlementProof:
    """Settlement metadata returned by the resource after a paid call"""
    transaction_hash: str
    network: str
    success: bool = True
    payer: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False)


def decode_settlement_header(value: Optional[str], default_network: Optional[str] = None) -> Optional[SettlementProof]:
    """
    Parse the PAYMENT-RESPONSE header.

    Missing or undecodable headers yield None: settlement metadata is
    unavailable but the paid call itself still succeeded.
    """
    if not value:
        return None
    try:
        data = decode_base64_json(value)
    except ValueError as e:
        logger.warning(f"x402: ignoring undecodable {PAYMENT_RESPONSE_HEADER} header: {e}")
        return None
    if not isinstance(data, dict) or not data.get("transactionHash"):
        logger.warning(f"x402: {PAYMENT_RESPONSE_HEADER} header has no transactionHash")
        return None
    network = data.get("network") or default_network
    if not network:
        logger.warning(f"x402: {PAYMENT_RESPONSE_HEADER} header has no network")
        return None
    return SettlementProof(
        transaction_hash=str(data["transactionHash"]),
        network=str(network),
        success=bool(data.get("success", True)),
        payer=data.get("payer"),
        raw=data,
    )


def encode_settlement_header(proof: SettlementProof) -> str:
    data: Dict[str, Any] = {
        "success": proof.success,
        "transactionHash": proof.transaction_hash,
        "network": proof.network,
    }
    if proof.payer:
        data["payer"] = proof.payer
    return encode_base64_json(data)
