"""Wallet capability consumed by the negotiator, plus a local private-key implementation."""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Protocol, runtime_checkable

from loguru import logger

from x402pay.financial.eip712 import EIP712Domain, EIP712Signer, coerce_types
from x402pay.identity.evm import EvmIdentity, identity_from_private_key


@runtime_checkable
class WalletCapability(Protocol):
    """
    What the negotiator needs from a wallet.

    sign_typed_data receives eth_signTypedData_v4 style arguments (domain and
    types as plain dicts, integers as Python ints) and returns a 0x-prefixed
    65-byte signature. A user rejection is reported by raising; any exception
    is treated as a declined signature. switch_chain is optional.
    """

    @property
    def address(self) -> str: ...

    @property
    def chain_id(self) -> Optional[int]: ...

    async def sign_typed_data(
        self,
        domain: Dict[str, Any],
        types: Dict[str, List[Dict[str, str]]],
        primary_type: str,
        message: Dict[str, Any],
    ) -> str: ...


def can_switch_chain(wallet: Any) -> bool:
    return callable(getattr(wallet, "switch_chain", None))


class LocalWallet:
    """Signs with an in-memory secp256k1 key; chain switching is a local setting."""

    def __init__(self, identity: EvmIdentity, chain_id: Optional[int] = None):
        self.identity = identity
        self._chain_id = chain_id

    @classmethod
    def from_private_key(cls, private_key_hex: str, chain_id: Optional[int] = None) -> LocalWallet:
        return cls(identity_from_private_key(private_key_hex), chain_id=chain_id)

    @property
    def address(self) -> str:
        return self.identity.address

    @property
    def chain_id(self) -> Optional[int]:
        return self._chain_id

    async def switch_chain(self, chain_id: int) -> None:
        logger.debug(f"Local wallet switching chain {self._chain_id} -> {chain_id}")
        self._chain_id = chain_id

    async def sign_typed_data(
        self,
        domain: Mapping[str, Any],
        types: Mapping[str, Any],
        primary_type: str,
        message: Mapping[str, Any],
    ) -> str:
        typed = coerce_types({k: v for k, v in types.items() if k != EIP712Signer.EIP712_DOMAIN_TYPE})
        return EIP712Signer.sign_typed_data(
            self.identity,
            EIP712Domain.from_dict(domain),
            typed,
            primary_type,
            message,
        )
