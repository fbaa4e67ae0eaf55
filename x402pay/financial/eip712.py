"""
EIP-712 Typed Data Hashing and Signing

Implements EIP-712 for signing structured data, used by x402 for
TransferWithAuthorization (EIP-3009).

Reference: https://eips.ethereum.org/EIPS/eip-712
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, utils

from x402pay.identity.evm import (
    SECP256K1_N,
    EvmIdentity,
    _private_key_from_hex,
    keccak256,
    public_point,
    recover_address,
    recover_public_point,
)


@dataclass(frozen=True)
class TypedDataField:
    """EIP-712 type field definition"""
    name: str
    type: str

    def to_dict(self) -> Dict[str, str]:
        return {"name": self.name, "type": self.type}


TypeMap = Dict[str, List[TypedDataField]]


@dataclass(frozen=True)
class EIP712Domain:
    """EIP-712 domain separator"""
    name: str
    version: str
    chain_id: int
    verifying_contract: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "chainId": self.chain_id,
            "verifyingContract": self.verifying_contract,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> EIP712Domain:
        return cls(
            name=data["name"],
            version=data["version"],
            chain_id=int(data["chainId"]),
            verifying_contract=data["verifyingContract"],
        )

    @property
    def fields(self) -> List[TypedDataField]:
        return [
            TypedDataField("name", "string"),
            TypedDataField("version", "string"),
            TypedDataField("chainId", "uint256"),
            TypedDataField("verifyingContract", "address"),
        ]


def coerce_types(types: Mapping[str, Sequence[Union[TypedDataField, Mapping[str, str]]]]) -> TypeMap:
    """Accept eth_signTypedData_v4 style {"Type": [{"name", "type"}]} as well as TypedDataField lists."""
    result: TypeMap = {}
    for type_name, fields in types.items():
        result[type_name] = [
            f if isinstance(f, TypedDataField) else TypedDataField(f["name"], f["type"])
            for f in fields
        ]
    return result


class EIP712Signer:
    """EIP-712 typed data hashing and signing"""

    EIP712_DOMAIN_TYPE = "EIP712Domain"
    EIP712_PREFIX = b"\x19\x01"
    SECP256K1_HALF_ORDER = SECP256K1_N // 2

    @staticmethod
    def encode_type(primary_type: str, types: TypeMap) -> str:
        """
        Encode type string for hashing.
        Format: TypeName(type1 field1,type2 field2,...) followed by referenced
        struct types sorted by name.
        """
        deps = sorted(EIP712Signer._get_dependencies(primary_type, types) - {primary_type})
        result = []
        for type_name in [primary_type] + deps:
            fields = types[type_name]
            field_strs = [f"{f.type} {f.name}" for f in fields]
            result.append(f"{type_name}({','.join(field_strs)})")
        return "".join(result)

    @staticmethod
    def _get_dependencies(
        primary_type: str,
        types: TypeMap,
        found: Optional[set] = None,
    ) -> set:
        """Collect struct types reachable from primary_type (inclusive)"""
        if found is None:
            found = set()
        base_type = primary_type.rstrip("[]")
        if base_type in found or base_type not in types:
            return found
        found.add(base_type)
        for field in types[base_type]:
            EIP712Signer._get_dependencies(field.type, types, found)
        return found

    @staticmethod
    def type_hash(primary_type: str, types: TypeMap) -> bytes:
        """Compute keccak256 hash of type string"""
        encoded = EIP712Signer.encode_type(primary_type, types)
        return keccak256(encoded.encode("utf-8"))

    @staticmethod
    def hash_struct(primary_type: str, types: TypeMap, value: Mapping[str, Any]) -> bytes:
        """Hash a struct according to EIP-712"""
        return keccak256(EIP712Signer._encode_data(primary_type, types, value))

    @staticmethod
    def _encode_data(primary_type: str, types: TypeMap, value: Mapping[str, Any]) -> bytes:
        """Encode struct data for hashing"""
        if primary_type not in types:
            raise ValueError(f"Type {primary_type} not found in types")

        encoded: List[bytes] = [EIP712Signer.type_hash(primary_type, types)]
        for field in types[primary_type]:
            if field.name not in value:
                raise ValueError(f"Missing value for {primary_type}.{field.name}")
            encoded.append(EIP712Signer._encode_field(field.type, value[field.name], types))
        return b"".join(encoded)

    @staticmethod
    def _to_int(value: Any) -> int:
        if isinstance(value, str):
            return int(value, 16) if value.startswith("0x") else int(value)
        return int(value)

    @staticmethod
    def _to_bytes(value: Any) -> bytes:
        if isinstance(value, str):
            if value.startswith("0x"):
                return bytes.fromhex(value[2:])
            return value.encode("utf-8")
        return bytes(value)

    @staticmethod
    def _encode_field(field_type: str, value: Any, types: TypeMap) -> bytes:
        """Encode a single field value"""
        if field_type.endswith("[]"):
            item_type = field_type[:-2]
            encoded_items = [EIP712Signer._encode_field(item_type, item, types) for item in value]
            return keccak256(b"".join(encoded_items))

        if field_type in types:
            return EIP712Signer.hash_struct(field_type, types, value)

        if field_type == "string":
            return keccak256(value.encode("utf-8") if isinstance(value, str) else bytes(value))

        if field_type == "bytes":
            return keccak256(EIP712Signer._to_bytes(value))

        if field_type == "bool":
            return (1 if value else 0).to_bytes(32, "big")

        if field_type == "address":
            if isinstance(value, str):
                raw = bytes.fromhex(value[2:] if value.startswith("0x") else value)
            else:
                raw = bytes(value)
            if len(raw) != 20:
                raise ValueError(f"Invalid address: {value}")
            return raw.rjust(32, b"\x00")

        if field_type.startswith("uint"):
            number = EIP712Signer._to_int(value)
            if number < 0:
                raise ValueError(f"Negative value for {field_type}: {value}")
            return number.to_bytes(32, "big")

        if field_type.startswith("int"):
            bits = int(field_type[3:]) if len(field_type) > 3 else 256
            number = EIP712Signer._to_int(value)
            if number < 0:
                number += 1 << bits
            return number.to_bytes(32, "big")

        if field_type.startswith("bytes"):
            length = int(field_type[5:])
            raw = EIP712Signer._to_bytes(value)
            if len(raw) > length:
                raise ValueError(f"Value too long for {field_type}")
            return raw.ljust(32, b"\x00")

        raise ValueError(f"Unsupported field type: {field_type}")

    @staticmethod
    def hash_domain(domain: EIP712Domain) -> bytes:
        """Hash the domain separator"""
        types: TypeMap = {EIP712Signer.EIP712_DOMAIN_TYPE: domain.fields}
        return EIP712Signer.hash_struct(EIP712Signer.EIP712_DOMAIN_TYPE, types, domain.to_dict())

    @staticmethod
    def digest(
        domain: EIP712Domain,
        types: TypeMap,
        primary_type: str,
        message: Mapping[str, Any],
    ) -> bytes:
        """keccak256(0x1901 || domainSeparator || hashStruct(message))"""
        domain_hash = EIP712Signer.hash_domain(domain)
        message_hash = EIP712Signer.hash_struct(primary_type, types, message)
        return keccak256(EIP712Signer.EIP712_PREFIX + domain_hash + message_hash)

    @staticmethod
    def sign_typed_data(
        identity: EvmIdentity,
        domain: EIP712Domain,
        types: TypeMap,
        primary_type: str,
        message: Mapping[str, Any],
    ) -> str:
        """
        Sign EIP-712 typed data.

        Args:
            identity: EVM identity with private key
            domain: EIP-712 domain separator
            types: Type definitions
            primary_type: The primary type being signed
            message: The message data

        Returns:
            65-byte signature as hex string (0x + r + s + v)
        """
        to_sign = EIP712Signer.digest(domain, types, primary_type, message)
        private_key = _private_key_from_hex(identity.private_key_hex)

        signature_der = private_key.sign(to_sign, ec.ECDSA(utils.Prehashed(hashes.SHA256())))
        r, s = utils.decode_dss_signature(signature_der)
        s = EIP712Signer._normalize_s(s)

        expected = public_point(private_key)
        for recovery_id in (0, 1):
            if recover_public_point(to_sign, r, s, recovery_id) == expected:
                v = 27 + recovery_id
                return f"0x{r:064x}{s:064x}{v:02x}"
        raise ValueError("Could not determine signature recovery id")

    @staticmethod
    def recover_signer(
        domain: EIP712Domain,
        types: TypeMap,
        primary_type: str,
        message: Mapping[str, Any],
        signature: str,
    ) -> str:
        """Checksummed address that signed the typed data"""
        return recover_address(EIP712Signer.digest(domain, types, primary_type, message), signature)

    @staticmethod
    def _normalize_s(s: int) -> int:
        """Normalize s to lower half of curve order (EIP-2)"""
        if s > EIP712Signer.SECP256K1_HALF_ORDER:
            s = SECP256K1_N - s
        return s

    @staticmethod
    def to_typed_data_json(
        domain: EIP712Domain,
        types: TypeMap,
        primary_type: str,
        message: Mapping[str, Any],
    ) -> Dict[str, Any]:
        """
        Convert to EIP-712 JSON format for wallets.

        Returns format compatible with eth_signTypedData_v4; integers are
        rendered as decimal strings so the document survives JSON encoding.
        """
        types_json = {
            name: [f.to_dict() for f in fields]
            for name, fields in types.items()
        }
        if EIP712Signer.EIP712_DOMAIN_TYPE not in types_json:
            types_json[EIP712Signer.EIP712_DOMAIN_TYPE] = [f.to_dict() for f in domain.fields]

        return {
            "types": types_json,
            "primaryType": primary_type,
            "domain": domain.to_dict(),
            "message": {k: str(v) if isinstance(v, int) else v for k, v in message.items()},
        }
