"""
Action Retrier

Replays a pending action with the PAYMENT-SIGNATURE header attached and turns
the resource's answer into a RetryOutcome or a typed error.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

import httpx
from loguru import logger
from pydantic import BaseModel, ConfigDict

from x402pay.financial.envelope import (
    PAYMENT_RESPONSE_HEADER,
    PAYMENT_SIGNATURE_HEADER,
    PaymentEnvelope,
    SettlementProof,
    decode_settlement_header,
    encode_payment_header,
)
from x402pay.financial.pending import PendingActionStore, ProcessingGuard
from x402pay.utils.exceptions import DuplicateSubmission, RemoteRejected, TransportFailure, classify_exception


class RemoteErrorBody(BaseModel):
    """Error fields a resource may return, most specific first."""
    model_config = ConfigDict(extra="ignore")

    reason: Optional[str] = None
    details: Optional[str] = None
    error: Optional[str] = None
    message: Optional[str] = None

    def best_message(self) -> Optional[str]:
        for text in (self.reason, self.details, self.error, self.message):
            if text:
                return text
        return None


def extract_error_message(data: Any, status: int) -> str:
    """Message for a rejected paid call: reason > details > error > message > HTTP status"""
    if isinstance(data, dict):
        fields = {k: v for k, v in data.items() if k in RemoteErrorBody.model_fields and isinstance(v, str)}
        message = RemoteErrorBody.model_validate(fields).best_message()
        if message:
            return message
    elif isinstance(data, str) and data.strip():
        return data.strip()
    return f"HTTP {status}"


def parse_response_body(response: httpx.Response) -> Any:
    """JSON body when possible, text otherwise"""
    try:
        return response.json()
    except ValueError:
        return response.text


@dataclass(frozen=True)
class RetryOutcome:
    """Successful paid call"""
    payment_id: str
    status: int
    data: Any
    settlement: Optional[SettlementProof] = None


class ActionRetrier:
    """Resubmits pending actions with a signed payment"""

    def __init__(
        self,
        store: PendingActionStore,
        guard: ProcessingGuard,
        http_client: httpx.AsyncClient,
        signature_header: str = PAYMENT_SIGNATURE_HEADER,
        response_header: str = PAYMENT_RESPONSE_HEADER,
        follow_redirects: bool = True,
    ):
        self.store = store
        self.guard = guard
        self._http_client = http_client
        self.signature_header = signature_header
        self.response_header = response_header
        self.follow_redirects = follow_redirects

    async def retry(self, payment_id: str, envelope: PaymentEnvelope) -> RetryOutcome:
        """
        Replay the stored call exactly once with the payment attached.

        The entry is removed on success and kept on failure; the processing
        guard is released either way.

        Raises:
            NotFoundError: no pending action for payment_id
            DuplicateSubmission: another submission for payment_id is in flight
            RemoteRejected: 4xx, or a body reporting success=false
            TransportFailure: network error or 5xx; the envelope can be resubmitted
        """
        action = self.store.get(payment_id)
        if not self.guard.try_enter(payment_id):
            logger.warning(f"Payment {payment_id} is already being processed")
            raise DuplicateSubmission(payment_id)

        try:
            headers = {**action.headers, self.signature_header: encode_payment_header(envelope)}
            logger.info(f"Submitting payment {payment_id} on {envelope.network}: {action.method} {action.url}")
            try:
                response = await self._http_client.request(
                    action.method,
                    action.url,
                    headers=headers,
                    follow_redirects=self.follow_redirects,
                    **action.request_kwargs(),
                )
            except httpx.HTTPError as e:
                cause, _, _ = classify_exception(e)
                logger.warning(f"Payment {payment_id} submission failed ({cause}): {e}")
                raise TransportFailure(f"Request failed: {e}", cause=cause) from e

            data = parse_response_body(response)
            status = response.status_code

            if status >= 500:
                raise TransportFailure(f"Server error: {extract_error_message(data, status)}", status=status)
            rejected = isinstance(data, dict) and data.get("success") is False
            if not response.is_success or rejected:
                message = extract_error_message(data, status)
                logger.warning(f"Payment {payment_id} rejected ({status}): {message}")
                raise RemoteRejected(message, status=status, body=data)

            settlement = decode_settlement_header(
                response.headers.get(self.response_header),
                default_network=envelope.network,
            )
            self.store.discard(payment_id)
            if settlement and not settlement.success:
                # resource served the call but its facilitator reports no settlement
                logger.warning(
                    f"Payment {payment_id} accepted but settlement reported failure "
                    f"({settlement.transaction_hash} on {settlement.network})"
                )
                settlement = None
            elif settlement:
                logger.info(f"Payment {payment_id} settled: {settlement.transaction_hash} on {settlement.network}")
            else:
                logger.info(f"Payment {payment_id} accepted without settlement metadata")
            return RetryOutcome(payment_id=payment_id, status=status, data=data, settlement=settlement)
        finally:
            self.guard.leave(payment_id)
