"""EVM key helpers: address derivation, checksums and secp256k1 signature recovery."""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import Optional, Tuple

from Crypto.Hash import keccak
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

SECP256K1_P = 2**256 - 2**32 - 977
SECP256K1_N = int(
    "FFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141",
    16,
)
SECP256K1_G = (
    0x79BE667EF9DCBBAC55A06295CE870B07029BFCDB2DCE28D959F2815B16F81798,
    0x483ADA7726A3C4655DA4FBFC0E1108A8FD17B448A68554199C47D08FFB10D4B8,
)

Point = Tuple[int, int]


@dataclass(frozen=True)
class EvmIdentity:
    private_key_hex: str
    address: str
    public_key_hex: str


def _normalize_key_hex(value: str) -> str:
    key = value.strip()
    if key.startswith("0x"):
        key = key[2:]
    if len(key) != 64:
        raise ValueError("Invalid private key length, expected 32-byte hex")
    key_int = int(key, 16)
    if not (0 < key_int < SECP256K1_N):
        raise ValueError("Invalid private key range for secp256k1")
    return key.lower()


def keccak256(data: bytes) -> bytes:
    h = keccak.new(digest_bits=256)
    h.update(data)
    return h.digest()


def _private_key_from_hex(private_key_hex: str) -> ec.EllipticCurvePrivateKey:
    key_int = int(_normalize_key_hex(private_key_hex), 16)
    return ec.derive_private_key(key_int, ec.SECP256K1())


def _address_from_point(point: Point) -> str:
    x, y = point
    # Ethereum address is last 20 bytes of keccak(x || y)
    addr = keccak256(x.to_bytes(32, "big") + y.to_bytes(32, "big"))[-20:].hex()
    return to_checksum_address(f"0x{addr}")


def public_point(private_key: ec.EllipticCurvePrivateKey) -> Point:
    numbers = private_key.public_key().public_numbers()
    return numbers.x, numbers.y


def generate_private_key_hex() -> str:
    while True:
        raw = secrets.token_bytes(32)
        key_int = int.from_bytes(raw, "big")
        if 0 < key_int < SECP256K1_N:
            return raw.hex()


def identity_from_private_key(private_key_hex: str) -> EvmIdentity:
    key = _normalize_key_hex(private_key_hex)
    private_key = _private_key_from_hex(key)
    uncompressed = private_key.public_key().public_bytes(Encoding.X962, PublicFormat.UncompressedPoint)
    return EvmIdentity(
        private_key_hex=key,
        address=_address_from_point(public_point(private_key)),
        public_key_hex=f"0x{uncompressed.hex()}",
    )


def is_address(value: str) -> bool:
    if not isinstance(value, str) or not value.startswith("0x") or len(value) != 42:
        return False
    try:
        int(value[2:], 16)
    except ValueError:
        return False
    return True


def to_checksum_address(value: str) -> str:
    """EIP-55 mixed-case checksum encoding."""
    if not is_address(value):
        raise ValueError(f"Invalid address: {value}")
    lower = value[2:].lower()
    digest = keccak256(lower.encode("ascii")).hex()
    return "0x" + "".join(
        c.upper() if c.isalpha() and int(digest[i], 16) >= 8 else c
        for i, c in enumerate(lower)
    )


def _point_add(p1: Optional[Point], p2: Optional[Point]) -> Optional[Point]:
    if p1 is None:
        return p2
    if p2 is None:
        return p1
    x1, y1 = p1
    x2, y2 = p2
    if x1 == x2:
        if (y1 + y2) % SECP256K1_P == 0:
            return None
        lam = 3 * x1 * x1 * pow(2 * y1, -1, SECP256K1_P) % SECP256K1_P
    else:
        lam = (y2 - y1) * pow(x2 - x1, -1, SECP256K1_P) % SECP256K1_P
    x3 = (lam * lam - x1 - x2) % SECP256K1_P
    y3 = (lam * (x1 - x3) - y1) % SECP256K1_P
    return x3, y3


def _point_mul(k: int, point: Optional[Point]) -> Optional[Point]:
    result: Optional[Point] = None
    addend = point
    while k:
        if k & 1:
            result = _point_add(result, addend)
        addend = _point_add(addend, addend)
        k >>= 1
    return result


def recover_public_point(digest: bytes, r: int, s: int, recovery_id: int) -> Optional[Point]:
    """Recover the signer's public point from a prehashed secp256k1 signature."""
    if not (0 < r < SECP256K1_N and 0 < s < SECP256K1_N) or recovery_id not in (0, 1):
        return None
    alpha = (pow(r, 3, SECP256K1_P) + 7) % SECP256K1_P
    beta = pow(alpha, (SECP256K1_P + 1) // 4, SECP256K1_P)
    if beta * beta % SECP256K1_P != alpha:
        return None
    y = beta if beta % 2 == recovery_id else SECP256K1_P - beta
    z = int.from_bytes(digest, "big")
    s_r = _point_mul(s, (r, y))
    neg_z_g = _point_mul((-z) % SECP256K1_N, SECP256K1_G)
    return _point_mul(pow(r, -1, SECP256K1_N), _point_add(s_r, neg_z_g))


def split_signature(signature: str) -> Tuple[int, int, int]:
    """Split a 0x r||s||v hex signature into (r, s, recovery_id)."""
    raw = signature[2:] if signature.startswith("0x") else signature
    if len(raw) != 130:
        raise ValueError("Invalid signature length, expected 65 bytes")
    r = int(raw[:64], 16)
    s = int(raw[64:128], 16)
    v = int(raw[128:], 16)
    return r, s, v - 27 if v >= 27 else v


def recover_address(digest: bytes, signature: str) -> str:
    """Address that produced `signature` over the 32-byte `digest`."""
    r, s, recovery_id = split_signature(signature)
    point = recover_public_point(digest, r, s, recovery_id)
    if point is None:
        raise ValueError("Signature does not recover to a valid public key")
    return _address_from_point(point)
