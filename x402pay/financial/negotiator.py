"""
x402 Payment Negotiator

State machine for a single payment attempt (one payment id).

Flow:
1. Requirements arrive (PAYMENT-REQUIRED header or discovery endpoint)
2. A network is selected: wallet's active chain, server default, first option
3. Balance is read (advisory)
4. Wallet is moved to the selected chain, then asked for one EIP-712 signature
5. The pending call is replayed with PAYMENT-SIGNATURE
6. Outcome: settled, rejected by the resource, or failed in transport
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from loguru import logger

from x402pay.config.schema import PaymentConfig
from x402pay.financial.authorization import AuthorizationBuilder, format_atomic_amount
from x402pay.financial.chains import DEFAULT_CATALOG, ChainConfig, NetworkCatalog
from x402pay.financial.envelope import PaymentEnvelope
from x402pay.financial.requirements import (
    PaymentRequiredDocument,
    PaymentRequirement,
    decode_payment_required_header,
    parse_requirements_document,
)
from x402pay.financial.retrier import ActionRetrier, RetryOutcome
from x402pay.financial.token_balance import BalanceResult, TokenBalanceChecker
from x402pay.financial.wallet import WalletCapability, can_switch_chain
from x402pay.utils.exceptions import (
    AuthorizationExpired,
    DuplicateSubmission,
    InsufficientBalance,
    MalformedRequirements,
    NegotiationStateError,
    RemoteRejected,
    SignatureDeclined,
    TransportFailure,
    UnknownNetwork,
    WrongActiveChain,
    X402Error,
    sanitize_error_message,
)

Discovery = Callable[[str, str], Awaitable[Any]]


class NegotiationState(str, Enum):
    IDLE = "idle"
    REQUIREMENTS_FETCHED = "requirements_fetched"
    NETWORK_SELECTED = "network_selected"
    SIGNING = "signing"
    SIGNED = "signed"
    SUBMITTING = "submitting"
    SETTLED = "settled"
    REJECTED = "rejected"
    FAILED = "failed"


_S = NegotiationState

TRANSITIONS: Dict[NegotiationState, frozenset] = {
    _S.IDLE: frozenset({_S.REQUIREMENTS_FETCHED, _S.FAILED}),
    _S.REQUIREMENTS_FETCHED: frozenset({_S.REQUIREMENTS_FETCHED, _S.NETWORK_SELECTED, _S.FAILED}),
    _S.NETWORK_SELECTED: frozenset({_S.REQUIREMENTS_FETCHED, _S.NETWORK_SELECTED, _S.SIGNING, _S.FAILED}),
    _S.SIGNING: frozenset({_S.SIGNED, _S.NETWORK_SELECTED}),
    _S.SIGNED: frozenset({_S.SUBMITTING, _S.NETWORK_SELECTED}),
    # SIGNED/FAILED again when another holder already owns the processing guard
    _S.SUBMITTING: frozenset({_S.SETTLED, _S.REJECTED, _S.FAILED, _S.SIGNED}),
    _S.REJECTED: frozenset({_S.NETWORK_SELECTED}),
    _S.FAILED: frozenset({_S.SUBMITTING, _S.NETWORK_SELECTED}),
    _S.SETTLED: frozenset(),
}


@dataclass
class X402PaymentResult:
    """Result of an x402 payment attempt"""
    success: bool
    response: Optional[Any] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    status: Optional[int] = None
    amount_paid: Optional[str] = None
    transaction_hash: Optional[str] = None
    transaction_url: Optional[str] = None
    network: Optional[str] = None
    payer: Optional[str] = None
    payment_id: Optional[str] = None
    state: Optional[NegotiationState] = None


class PaymentNegotiator:
    """
    Drives one payment id from requirements to settlement.

    Collaborators are injected by the owning PaymentSession; the negotiator
    holds no global state.
    """

    def __init__(
        self,
        payment_id: str,
        wallet: WalletCapability,
        retrier: ActionRetrier,
        builder: AuthorizationBuilder,
        balance_checker: Optional[TokenBalanceChecker] = None,
        catalog: NetworkCatalog = DEFAULT_CATALOG,
        config: Optional[PaymentConfig] = None,
        discovery: Optional[Discovery] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.payment_id = payment_id
        self.wallet = wallet
        self.retrier = retrier
        self.builder = builder
        self.balance_checker = balance_checker
        self.catalog = catalog
        self.config = config or PaymentConfig()
        self._discovery = discovery
        self._clock = clock

        self.state = NegotiationState.IDLE
        self.history: List[NegotiationState] = [NegotiationState.IDLE]
        self.document: Optional[PaymentRequiredDocument] = None
        self.selected: Optional[PaymentRequirement] = None
        self.chain: Optional[ChainConfig] = None
        self.balance: Optional[BalanceResult] = None
        self.envelope: Optional[PaymentEnvelope] = None
        self.outcome: Optional[RetryOutcome] = None
        self.error: Optional[X402Error] = None
        self.warnings: List[X402Error] = []

        self._fetch_seq = 0
        self._applied_seq = 0
        self._fetch_key: Optional[Tuple[str, str]] = None
        self._fetch_task: Optional[asyncio.Future] = None

    # -- state ---------------------------------------------------------------

    def _transition(self, target: NegotiationState) -> None:
        if target not in TRANSITIONS[self.state]:
            raise NegotiationStateError(self.state.value, target.value)
        logger.debug(f"x402 {self.payment_id}: {self.state.value} -> {target.value}")
        self.state = target
        self.history.append(target)

    def _fail(self, error: X402Error) -> None:
        self.error = error
        self._transition(NegotiationState.FAILED)

    def _clear_selection(self) -> None:
        self.selected = None
        self.chain = None
        self.balance = None
        self.envelope = None
        self.warnings = []

    # -- requirements --------------------------------------------------------

    @property
    def can_discover(self) -> bool:
        return self._discovery is not None

    def load_requirements(self, data: Any) -> PaymentRequiredDocument:
        """Accept a decoded requirements document (IDLE -> REQUIREMENTS_FETCHED)."""
        try:
            document = parse_requirements_document(data)
        except MalformedRequirements as e:
            self._fail(e)
            raise
        self._apply_document(document)
        return document

    def load_payment_required_header(self, value: Optional[str]) -> PaymentRequiredDocument:
        """Accept the PAYMENT-REQUIRED header of a 402 response."""
        try:
            if not value:
                raise MalformedRequirements("402 response has no payment requirements header")
            document = decode_payment_required_header(value)
        except MalformedRequirements as e:
            self._fail(e)
            raise
        self._apply_document(document)
        return document

    def _apply_document(self, document: PaymentRequiredDocument) -> None:
        self._transition(NegotiationState.REQUIREMENTS_FETCHED)
        self.document = document
        self._clear_selection()
        logger.debug(
            f"x402 {self.payment_id}: {len(document.exact_accepts)} payment option(s), "
            f"default network {document.default_network}"
        )

    async def ensure_requirements(self, resource: str, method: str = "POST") -> PaymentRequiredDocument:
        """
        Fetch requirements from the discovery endpoint once per (resource, method).

        Repeated calls with the same key reuse the loaded document or the
        fetch already in flight. A call with a new key supersedes earlier
        fetches; their late results are not applied.
        """
        if self._discovery is None:
            raise MalformedRequirements("No discovery endpoint configured")
        key = (resource, method.upper())
        if self._fetch_key == key and self.document is not None and self._applied_seq == self._fetch_seq:
            return self.document

        if self._fetch_key != key or self._fetch_task is None:
            self._fetch_seq += 1
            self._fetch_key = key
            self._fetch_task = asyncio.ensure_future(self._discovery(resource, key[1]))
        seq = self._fetch_seq
        task = self._fetch_task

        try:
            document = parse_requirements_document(await asyncio.shield(task))
        except MalformedRequirements as e:
            if seq == self._fetch_seq and self.state != NegotiationState.FAILED:
                self._fail(e)
            raise
        except Exception:
            if seq == self._fetch_seq and self._fetch_task is task:
                self._fetch_task = None
            raise

        if seq != self._fetch_seq:
            logger.debug(f"x402 {self.payment_id}: discarding stale requirements for {resource}")
            return document
        if self._applied_seq != seq:
            self._applied_seq = seq
            self._apply_document(document)
        return self.document

    # -- selection -----------------------------------------------------------

    def candidates(self) -> List[PaymentRequirement]:
        """Exact options whose network and asset are in the catalog, in server order."""
        if self.document is None:
            return []
        allowed = self.config.supported_networks
        options = []
        for option in self.document.exact_accepts:
            try:
                self.builder.resolve_chain(option)
            except UnknownNetwork as e:
                logger.warning(f"x402 {self.payment_id}: skipping option on {option.network}: {e.message}")
                continue
            if allowed and not any(self.catalog.same_network(option.network, n) for n in allowed):
                continue
            options.append(option)
        return options

    def _pick_default(self, options: List[PaymentRequirement]) -> PaymentRequirement:
        active = self.wallet.chain_id
        if active is not None:
            for option in options:
                if self.catalog.resolve(option.network).chain_id == active:
                    return option
        default = self.document.default_network if self.document else None
        if default:
            for option in options:
                if self.catalog.same_network(option.network, default) or option.extra.legacy_network_name == default:
                    return option
        return options[0]

    def select_network(self, network: Optional[str] = None) -> PaymentRequirement:
        """
        Choose the payment option to sign.

        Without an explicit network: wallet's active chain, then the server
        default, then the first option. Re-selecting clears balance and
        signature state of the previous choice.
        """
        if self.document is None or NegotiationState.NETWORK_SELECTED not in TRANSITIONS[self.state]:
            raise NegotiationStateError(self.state.value, NegotiationState.NETWORK_SELECTED.value)

        options = self.candidates()
        if network is not None:
            chosen = next((o for o in options if self.catalog.same_network(o.network, network)), None)
            if chosen is None:
                raise UnknownNetwork(network, f"No payment option for network {network}")
        elif not options:
            error = UnknownNetwork(
                ", ".join(o.network for o in self.document.exact_accepts),
                "No payment option on a supported network",
            )
            self._fail(error)
            raise error
        else:
            chosen = self._pick_default(options)

        self._transition(NegotiationState.NETWORK_SELECTED)
        self._clear_selection()
        self.error = None
        self.selected = chosen
        self.chain = self.catalog.resolve(chosen.network)
        logger.debug(f"x402 {self.payment_id}: selected {self.chain.display_name}")
        return chosen

    # -- balance -------------------------------------------------------------

    async def check_balance(self) -> Optional[BalanceResult]:
        """Advisory balance read for the selected option."""
        if self.state != NegotiationState.NETWORK_SELECTED or self.selected is None:
            raise NegotiationStateError(self.state.value, "balance_check")
        if self.balance_checker is None:
            return None

        selected = self.selected
        required = self.builder.resolve_amount(selected)
        result = await self.balance_checker.check(
            self.wallet.address, selected.network, selected.asset, required=required
        )
        if self.selected is not selected:
            # Selection changed while the read was in flight.
            return result

        self.balance = result
        if not result.ok:
            logger.warning(f"x402 {self.payment_id}: balance unknown ({result.error}), continuing")
        elif result.meets_required is False:
            warning = InsufficientBalance(result.formatted, format_atomic_amount(required), result.symbol)
            self.warnings.append(warning)
            logger.warning(f"x402 {self.payment_id}: {warning.message}")
            if self.config.require_sufficient_balance:
                raise warning
        return result

    # -- signing -------------------------------------------------------------

    async def ensure_active_chain(self) -> None:
        """Best-effort switch to the selected chain; WrongActiveChain when the wallet stays elsewhere."""
        chain = self.chain
        if chain is None:
            raise NegotiationStateError(self.state.value, NegotiationState.SIGNING.value)
        if self.wallet.chain_id == chain.chain_id:
            return
        if self.config.auto_switch_chain and can_switch_chain(self.wallet):
            try:
                await self.wallet.switch_chain(chain.chain_id)
            except Exception as e:
                logger.warning(f"x402 {self.payment_id}: switch to {chain.display_name} failed: {e}")
            if self.wallet.chain_id == chain.chain_id:
                return
        raise WrongActiveChain(chain.display_name, chain.chain_id, self.wallet.chain_id)

    async def sign(self) -> PaymentEnvelope:
        """Request exactly one signature from the wallet (NETWORK_SELECTED -> SIGNED)."""
        if self.state != NegotiationState.NETWORK_SELECTED or self.selected is None:
            raise NegotiationStateError(self.state.value, NegotiationState.SIGNING.value)

        await self.ensure_active_chain()
        request = self.builder.build(self.selected, self.wallet.address, active_chain_id=self.wallet.chain_id)
        types = {name: [f.to_dict() for f in fields] for name, fields in request.types.items()}

        self._transition(NegotiationState.SIGNING)
        try:
            signature = await self.wallet.sign_typed_data(
                request.domain.to_dict(), types, request.primary_type, request.message
            )
        except Exception as e:
            declined = e if isinstance(e, SignatureDeclined) else SignatureDeclined(
                f"Signature request failed: {sanitize_error_message(str(e))}"
            )
            self.error = declined
            self._transition(NegotiationState.NETWORK_SELECTED)
            logger.info(f"x402 {self.payment_id}: {declined.message}")
            raise declined from e

        if not isinstance(signature, str) or not signature.startswith("0x") or len(signature) != 132:
            self.error = SignatureDeclined("Wallet returned an invalid signature")
            self._transition(NegotiationState.NETWORK_SELECTED)
            raise self.error

        self.envelope = request.envelope(signature)
        self._transition(NegotiationState.SIGNED)
        return self.envelope

    # -- submission ----------------------------------------------------------

    async def submit(self) -> RetryOutcome:
        """Replay the pending call with the signed payment (SIGNED -> SETTLED | REJECTED | FAILED)."""
        if self.state == NegotiationState.SUBMITTING:
            raise DuplicateSubmission(self.payment_id)
        if self.envelope is None or self.state not in (NegotiationState.SIGNED, NegotiationState.FAILED):
            raise NegotiationStateError(self.state.value, NegotiationState.SUBMITTING.value)

        valid_before = self.envelope.authorization.valid_before
        if valid_before <= int(self._clock()):
            expired = AuthorizationExpired(self.payment_id, valid_before)
            self.error = expired
            self.envelope = None
            self._transition(NegotiationState.NETWORK_SELECTED)
            raise expired

        previous = self.state
        self._transition(NegotiationState.SUBMITTING)
        try:
            outcome = await self.retrier.retry(self.payment_id, self.envelope)
        except DuplicateSubmission:
            self._transition(previous)
            raise
        except RemoteRejected as e:
            self.error = e
            self._transition(NegotiationState.REJECTED)
            raise
        except X402Error as e:
            self._fail(e)
            raise
        except Exception as e:
            self._fail(TransportFailure(f"Submission failed: {sanitize_error_message(str(e))}"))
            raise self.error from e

        self.outcome = outcome
        self.error = None
        self._transition(NegotiationState.SETTLED)
        return outcome

    # -- convenience ---------------------------------------------------------

    async def run(self, network: Optional[str] = None) -> X402PaymentResult:
        """
        Select, check balance, sign and submit, returning a result instead of raising.

        Resumes where the machine stands: a FAILED transport attempt is
        resubmitted with the same envelope, a REJECTED one is re-signed.
        """
        try:
            if self.state in (NegotiationState.REQUIREMENTS_FETCHED, NegotiationState.REJECTED) or network:
                self.select_network(network)
            if self.state == NegotiationState.NETWORK_SELECTED:
                if self.config.check_balance:
                    await self.check_balance()
                await self.sign()
            await self.submit()
        except X402Error as e:
            self.error = e
        return self.result()

    def result(self) -> X402PaymentResult:
        outcome = self.outcome if self.state == NegotiationState.SETTLED else None
        error = None if outcome else self.error
        settlement = outcome.settlement if outcome else None
        network = settlement.network if settlement else (self.selected.network if self.selected else None)

        tx_url = None
        if settlement:
            chain = self.catalog.get(settlement.network)
            tx_url = chain.transaction_url(settlement.transaction_hash) if chain else None

        status = outcome.status if outcome else None
        response = outcome.data if outcome else None
        if error is not None:
            status = error.details.get("status")
            response = error.details.get("body")

        return X402PaymentResult(
            success=outcome is not None,
            response=response,
            error=error.message if error else None,
            error_code=error.code if error else None,
            status=status,
            amount_paid=(
                format_atomic_amount(self.envelope.authorization.value)
                if outcome and self.envelope else None
            ),
            transaction_hash=settlement.transaction_hash if settlement else None,
            transaction_url=tx_url,
            network=network,
            payer=(settlement.payer if settlement and settlement.payer else self.wallet.address),
            payment_id=self.payment_id,
            state=self.state,
        )
