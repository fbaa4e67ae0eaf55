"""
x402 Payment Session

Client for paid HTTP resources. Sends the unpaid call, and when the resource
answers 402 Payment Required, remembers the call and hands it to a
PaymentNegotiator that signs and replays it.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from functools import partial
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlparse

import httpx
from loguru import logger

from x402pay.config.schema import Config
from x402pay.financial.authorization import AuthorizationBuilder
from x402pay.financial.chains import DEFAULT_CATALOG, NetworkCatalog
from x402pay.financial.envelope import PaymentEnvelope
from x402pay.financial.negotiator import NegotiationState, PaymentNegotiator, X402PaymentResult
from x402pay.financial.pending import PendingActionStore, ProcessingGuard, build_request_kwargs
from x402pay.financial.requirements import PaymentRequiredDocument, parse_requirements_document
from x402pay.financial.resources import resource_id_from_url
from x402pay.financial.retrier import ActionRetrier, RetryOutcome, parse_response_body
from x402pay.financial.token_balance import TokenBalanceChecker
from x402pay.financial.wallet import WalletCapability
from x402pay.utils.exceptions import MalformedRequirements, TransportFailure, X402Error, classify_exception


async def discover_requirements(
    client: httpx.AsyncClient,
    discovery_url: str,
    resource: str,
    method: str = "POST",
) -> PaymentRequiredDocument:
    """
    GET <discovery_url>?endpoint=<resource>&method=<METHOD>

    Raises:
        TransportFailure: network error or non-2xx answer
        MalformedRequirements: body is not a valid requirements document
    """
    try:
        response = await client.get(discovery_url, params={"endpoint": resource, "method": method.upper()})
    except httpx.HTTPError as e:
        raise TransportFailure(f"Requirements discovery failed: {e}", cause=classify_exception(e)[0]) from e
    if not response.is_success:
        raise TransportFailure(
            f"Requirements discovery failed: HTTP {response.status_code}", status=response.status_code
        )
    try:
        data = response.json()
    except ValueError as e:
        raise MalformedRequirements("Requirements discovery returned invalid JSON") from e
    return parse_requirements_document(data)


@dataclass
class SessionResponse:
    """Answer to an unpaid call; ``negotiator`` is set when payment is required"""
    response: httpx.Response
    negotiator: Optional[PaymentNegotiator] = None

    @property
    def payment_required(self) -> bool:
        return self.negotiator is not None

    @property
    def payment_id(self) -> Optional[str]:
        return self.negotiator.payment_id if self.negotiator else None


class PaymentSession:
    """
    Pays for x402-gated HTTP resources with a wallet.

    Example:
        async with PaymentSession(LocalWallet.from_private_key(key, chain_id=8453)) as session:
            result = await session.fetch_with_payment("POST", url, body={"text": "..."})
    """

    def __init__(
        self,
        wallet: WalletCapability,
        config: Optional[Config] = None,
        catalog: Optional[NetworkCatalog] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        balance_checker: Optional[TokenBalanceChecker] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.wallet = wallet
        self.config = config or Config()
        self.catalog = (catalog or DEFAULT_CATALOG).with_rpc_overrides(self.config.balance.rpc_urls)
        self._clock = clock

        http = self.config.http
        self._owns_http_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=http.timeout)
        self._owns_balance_checker = balance_checker is None
        self.balance_checker = balance_checker or TokenBalanceChecker(
            self.catalog, timeout=self.config.balance.timeout
        )

        payment = self.config.payment
        self.builder = AuthorizationBuilder(
            self.catalog,
            validity_seconds=payment.validity_seconds,
            defer_validity=payment.defer_validity,
            clock=clock,
        )
        self.store = PendingActionStore()
        self.guard = ProcessingGuard()
        self.retrier = ActionRetrier(
            self.store,
            self.guard,
            self.http_client,
            signature_header=http.payment_signature_header,
            response_header=http.payment_response_header,
            follow_redirects=http.follow_redirects,
        )
        self.negotiators: Dict[str, PaymentNegotiator] = {}

    def _new_negotiator(self, payment_id: str) -> PaymentNegotiator:
        for settled in [n for n in self.negotiators.values() if n.state == NegotiationState.SETTLED]:
            self._release(settled)
        discovery = None
        if self.config.http.discovery_url:
            discovery = partial(discover_requirements, self.http_client, self.config.http.discovery_url)
        negotiator = PaymentNegotiator(
            payment_id,
            self.wallet,
            retrier=self.retrier,
            builder=self.builder,
            balance_checker=self.balance_checker,
            catalog=self.catalog,
            config=self.config.payment,
            discovery=discovery,
            clock=self._clock,
        )
        self.negotiators[payment_id] = negotiator
        return negotiator

    async def send(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        body: Any = None,
        files: Any = None,
        description: str = "",
        resource_id: Optional[str] = None,
    ) -> SessionResponse:
        """
        Issue the unpaid call.

        A 402 answer registers a pending action and returns a negotiator
        loaded with the resource's requirements. A negotiator whose
        requirements could not be read is returned in the FAILED state.
        """
        try:
            response = await self.http_client.request(
                method.upper(),
                url,
                headers=headers,
                follow_redirects=self.config.http.follow_redirects,
                **build_request_kwargs(body, files),
            )
        except httpx.HTTPError as e:
            raise TransportFailure(f"Request failed: {e}", cause=classify_exception(e)[0]) from e

        if response.status_code != 402:
            return SessionResponse(response)

        action = self.store.register(
            url,
            method,
            headers=headers,
            body=body,
            files=files,
            description=description,
            resource_id=resource_id or resource_id_from_url(url),
        )
        negotiator = self._new_negotiator(action.payment_id)
        logger.info(f"Payment required for {action.method} {url} ({action.payment_id})")

        header = response.headers.get(self.config.http.payment_required_header)
        try:
            if header or not negotiator.can_discover:
                negotiator.load_payment_required_header(header)
            else:
                await negotiator.ensure_requirements(urlparse(url).path, method)
        except (MalformedRequirements, TransportFailure) as e:
            logger.warning(f"Could not read payment requirements for {url}: {e.message}")
            negotiator.error = e
        return SessionResponse(response, negotiator)

    async def fetch_with_payment(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        body: Any = None,
        files: Any = None,
        description: str = "",
        network: Optional[str] = None,
    ) -> X402PaymentResult:
        """
        Call a resource, paying when it answers 402.

        Never raises for payment or transport problems; inspect
        ``result.error`` / ``result.error_code`` instead.
        """
        try:
            sent = await self.send(method, url, headers=headers, body=body, files=files, description=description)
        except X402Error as e:
            return X402PaymentResult(success=False, error=e.message, error_code=e.code)

        if sent.negotiator is None:
            response = sent.response
            data = parse_response_body(response)
            return X402PaymentResult(
                success=response.is_success,
                response=data,
                status=response.status_code,
                error=None if response.is_success else f"HTTP {response.status_code}",
            )

        negotiator = sent.negotiator
        if negotiator.state in (NegotiationState.IDLE, NegotiationState.FAILED):
            return negotiator.result()
        result = await negotiator.run(network)
        self._release(negotiator)
        return result

    def negotiator(self, payment_id: str) -> Optional[PaymentNegotiator]:
        return self.negotiators.get(payment_id)

    async def retry(self, payment_id: str, envelope: PaymentEnvelope) -> RetryOutcome:
        """Replay a pending call with an externally produced envelope."""
        outcome = await self.retrier.retry(payment_id, envelope)
        self.negotiators.pop(payment_id, None)
        return outcome

    def _release(self, negotiator: PaymentNegotiator) -> None:
        # settled attempts are finished; rejected or failed ones stay resumable
        if negotiator.state == NegotiationState.SETTLED:
            self.negotiators.pop(negotiator.payment_id, None)

    def abandon(self, payment_id: str) -> None:
        """Forget a pending call the user chose not to pay for."""
        self.store.discard(payment_id)
        self.negotiators.pop(payment_id, None)

    async def close(self) -> None:
        if self._owns_http_client:
            await self.http_client.aclose()
        if self._owns_balance_checker:
            await self.balance_checker.close()

    async def __aenter__(self) -> PaymentSession:
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()
