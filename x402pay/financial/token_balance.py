"""
Token Balance Checker

Reads ERC-20 stablecoin balances with a JSON-RPC eth_call. Failures degrade
to an "unknown" result instead of raising, and identical concurrent lookups
share a single RPC request.
"""

from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

import httpx
from loguru import logger

from x402pay.financial.authorization import format_atomic_amount
from x402pay.financial.chains import DEFAULT_CATALOG, NetworkCatalog, NetworkKey
from x402pay.identity.evm import is_address, keccak256

BALANCE_OF_SIGNATURE = "balanceOf(address)"


def function_selector(signature: str) -> str:
    """First four bytes of keccak(signature), hex without 0x"""
    return keccak256(signature.encode("utf-8"))[:4].hex()


def encode_arg(arg_type: str, value: Any) -> str:
    """Encode a single static ABI argument"""
    if arg_type == "address":
        if not is_address(value):
            raise ValueError(f"Invalid address: {value}")
        return value[2:].lower().zfill(64)

    if arg_type.startswith("uint"):
        if isinstance(value, str):
            value = int(value, 16) if value.startswith("0x") else int(value)
        return f"{value:064x}"

    raise ValueError(f"Unsupported type: {arg_type}")


def encode_balance_of(wallet_address: str) -> str:
    return "0x" + function_selector(BALANCE_OF_SIGNATURE) + encode_arg("address", wallet_address)


def decode_uint256(data: str) -> int:
    """Decode uint256 from an eth_call hex result"""
    if not isinstance(data, str) or not data.startswith("0x") or len(data) < 3:
        raise ValueError(f"Malformed uint256 result: {data!r}")
    return int(data[2:], 16)


@dataclass(frozen=True)
class BalanceResult:
    """Token balance query result; raw is None when the balance is unknown"""
    network: str
    asset: str
    wallet_address: str
    ok: bool
    raw: Optional[int] = None
    formatted: Optional[str] = None
    decimals: int = 6
    symbol: str = "USDC"
    required: Optional[int] = None
    error: Optional[str] = None

    @property
    def meets_required(self) -> Optional[bool]:
        """True/False when both balance and requirement are known, else None"""
        if self.raw is None or self.required is None:
            return None
        return self.raw >= self.required


BalanceKey = Tuple[str, int, str]


class TokenBalanceChecker:
    """Query ERC-20 stablecoin balances from blockchain"""

    def __init__(
        self,
        catalog: NetworkCatalog = DEFAULT_CATALOG,
        timeout: float = 10.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize balance checker.

        Args:
            catalog: Network catalog (RPC overrides are applied to the catalog)
            timeout: Request timeout in seconds
            http_client: Custom HTTP client; closed by the caller
        """
        self.catalog = catalog
        self.timeout = timeout
        self._client = http_client
        self._owns_client = http_client is None
        self._inflight: Dict[BalanceKey, asyncio.Task] = {}
        self._request_ids = itertools.count(1)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client"""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        """Close HTTP client if this checker created it"""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def eth_call(self, rpc_url: str, to: str, data: str, block: str = "latest") -> str:
        """Make eth_call RPC request; raises on transport or RPC errors"""
        client = await self._get_client()
        payload = {
            "jsonrpc": "2.0",
            "method": "eth_call",
            "params": [{"to": to, "data": data}, block],
            "id": next(self._request_ids),
        }
        resp = await client.post(rpc_url, json=payload)
        resp.raise_for_status()
        result = resp.json()
        if not isinstance(result, dict):
            raise ValueError("RPC response is not a JSON object")
        if result.get("error"):
            raise ValueError(f"RPC error: {result['error']}")
        return result.get("result")

    def _forget(self, key: BalanceKey, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        # every awaiter may have been cancelled; mark the failure as retrieved
        if not task.cancelled():
            task.exception()

    async def _read_balance(self, rpc_url: str, asset: str, wallet_address: str) -> int:
        result = await self.eth_call(rpc_url, asset, encode_balance_of(wallet_address))
        return decode_uint256(result)

    async def check(
        self,
        wallet_address: str,
        network: NetworkKey,
        asset: Optional[str] = None,
        required: Optional[int] = None,
    ) -> BalanceResult:
        """
        Get the stablecoin balance of a wallet.

        Args:
            wallet_address: Wallet address (0x...)
            network: Any catalog key for the network
            asset: Token contract; defaults to the network's USDC
            required: Atomic amount the caller intends to pay

        Returns:
            BalanceResult; ok=False (unknown balance) on any failure
        """
        chain = self.catalog.get(network)
        if chain is None:
            return BalanceResult(
                network=str(network),
                asset=asset or "",
                wallet_address=wallet_address,
                ok=False,
                required=required,
                error=f"Unsupported network: {network}",
            )

        token = chain.usdc
        asset = asset or token.address
        key: BalanceKey = (wallet_address.lower(), chain.chain_id, asset.lower())

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._read_balance(chain.rpc_url, asset, wallet_address))
            self._inflight[key] = task
            task.add_done_callback(lambda t, k=key: self._forget(k, t))
        else:
            logger.debug(f"Balance lookup for {wallet_address} on {chain.name} already in flight")

        try:
            raw = await asyncio.shield(task)
        except Exception as e:
            logger.error(f"Balance check failed on {chain.name}: {e}")
            return BalanceResult(
                network=chain.network_id,
                asset=asset,
                wallet_address=wallet_address,
                ok=False,
                decimals=token.decimals,
                symbol=token.symbol,
                required=required,
                error=str(e),
            )

        return BalanceResult(
            network=chain.network_id,
            asset=asset,
            wallet_address=wallet_address,
            ok=True,
            raw=raw,
            formatted=format_atomic_amount(raw, token.decimals),
            decimals=token.decimals,
            symbol=token.symbol,
            required=required,
        )

    async def check_many(
        self,
        wallet_address: str,
        networks: Optional[Iterable[NetworkKey]] = None,
    ) -> List[BalanceResult]:
        """
        Get balances across multiple networks concurrently.

        Args:
            wallet_address: Wallet address
            networks: Catalog keys (default: every mainnet in the catalog)
        """
        if networks is None:
            networks = [chain.name for chain in self.catalog.networks(testnet=False)]
        return list(await asyncio.gather(*(self.check(wallet_address, n) for n in networks)))
