"""Identity helpers."""

from x402pay.identity.evm import (
    EvmIdentity,
    generate_private_key_hex,
    identity_from_private_key,
    recover_address,
    to_checksum_address,
)

__all__ = [
    "EvmIdentity",
    "generate_private_key_hex",
    "identity_from_private_key",
    "recover_address",
    "to_checksum_address",
]
