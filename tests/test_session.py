"""Tests for PaymentSession end to end over a mocked resource server."""

import json

import httpx
import pytest

from x402pay.config.schema import BalanceConfig, Config, HttpConfig, PaymentConfig
from x402pay.financial.envelope import SettlementProof, decode_payment_header, encode_settlement_header
from x402pay.financial.negotiator import NegotiationState
from x402pay.financial.session import PaymentSession
from x402pay.financial.token_balance import TokenBalanceChecker

from conftest import FIXED_NOW, TEST_ADDRESS, make_document, make_header, make_option

URL = "https://api.example.com/api/ai/summarize"
DISCOVERY_URL = "https://api.example.com/api/payment/requirements"


class Server:
    """Resource that demands payment, plus a discovery endpoint and a Base RPC node."""

    def __init__(self, send_header=True, paid_status=200, balance=1_000_000):
        self.send_header = send_header
        self.paid_status = paid_status
        self.balance = balance
        self.unpaid = []
        self.paid = []
        self.discovery = []
        self.rpc = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.host == "mainnet.base.org":
            self.rpc.append(json.loads(request.content))
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": hex(self.balance)})
        if request.url.path == "/api/payment/requirements":
            self.discovery.append(dict(request.url.params))
            return httpx.Response(200, json=make_document(make_option()))

        signature = request.headers.get("PAYMENT-SIGNATURE")
        if signature is None:
            self.unpaid.append(request)
            headers = {"PAYMENT-REQUIRED": make_header(make_option())} if self.send_header else {}
            return httpx.Response(402, json={"error": "Payment required"}, headers=headers)

        self.paid.append((request, decode_payment_header(signature)))
        if self.paid_status != 200:
            return httpx.Response(self.paid_status, json={"error": "Payment verification failed"})
        proof = SettlementProof(transaction_hash="0xfeed", network="eip155:8453", payer=TEST_ADDRESS)
        return httpx.Response(
            200,
            json={"success": True, "data": {"summary": "short"}},
            headers={"PAYMENT-RESPONSE": encode_settlement_header(proof)},
        )


def _session(server, wallet, config=None) -> PaymentSession:
    client = httpx.AsyncClient(transport=httpx.MockTransport(server))
    return PaymentSession(
        wallet,
        config=config,
        http_client=client,
        balance_checker=TokenBalanceChecker(http_client=client),
        clock=lambda: FIXED_NOW,
    )


class TestFetchWithPayment:
    """Test the full flow"""

    @pytest.mark.asyncio
    async def test_pays_and_replays(self, wallet):
        server = Server()
        async with _session(server, wallet) as session:
            result = await session.fetch_with_payment("POST", URL, body={"text": "long"}, description="Summarize")

        assert result.success is True
        assert result.transaction_hash == "0xfeed"
        assert result.payer == TEST_ADDRESS
        assert result.response["data"]["summary"] == "short"
        assert len(server.unpaid) == 1
        assert len(server.paid) == 1
        assert len(server.rpc) == 1
        request, envelope = server.paid[0]
        assert json.loads(request.content) == {"text": "long"}
        assert envelope.authorization.from_address == TEST_ADDRESS
        assert len(session.store) == 0

    @pytest.mark.asyncio
    async def test_settled_negotiators_are_released(self, wallet):
        server = Server()
        config = Config(payment=PaymentConfig(check_balance=False))
        async with _session(server, wallet, config) as session:
            results = [await session.fetch_with_payment("POST", URL, body={"n": i}) for i in range(5)]

        assert all(r.success for r in results)
        assert len(server.paid) == 5
        assert len(session.store) == 0
        assert session.negotiators == {}

    @pytest.mark.asyncio
    async def test_free_resource_is_not_paid(self, wallet):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"ok": True})

        async with _session(handler, wallet) as session:
            result = await session.fetch_with_payment("GET", "https://api.example.com/free")

        assert result.success is True
        assert result.response == {"ok": True}
        assert result.payment_id is None
        assert len(session.store) == 0

    @pytest.mark.asyncio
    async def test_rejected_payment_keeps_pending_action(self, wallet):
        server = Server(paid_status=402)
        async with _session(server, wallet) as session:
            result = await session.fetch_with_payment("POST", URL, body={"text": "long"})

        assert result.success is False
        assert result.error_code == "REMOTE_REJECTED"
        assert result.error == "Payment verification failed"
        assert result.payment_id in session.store
        assert session.negotiator(result.payment_id).state == NegotiationState.REJECTED

    @pytest.mark.asyncio
    async def test_connection_error(self, wallet):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("unreachable", request=request)

        async with _session(handler, wallet) as session:
            result = await session.fetch_with_payment("POST", URL)

        assert result.success is False
        assert result.error_code == "TRANSPORT_FAILURE"


class TestSend:
    """Test the unpaid call and requirement loading"""

    @pytest.mark.asyncio
    async def test_send_registers_pending_action(self, wallet):
        server = Server()
        async with _session(server, wallet) as session:
            sent = await session.send("POST", URL, headers={"X-Trace": "7"}, body={"text": "long"})

            assert sent.payment_required is True
            action = session.store.get(sent.payment_id)
            assert action.resource_id == "summarize"
            assert action.headers == {"X-Trace": "7"}
            assert sent.negotiator.state == NegotiationState.REQUIREMENTS_FETCHED

            outcome_result = await sent.negotiator.run()

        assert outcome_result.success is True
        assert server.paid[0][0].headers["X-Trace"] == "7"

    @pytest.mark.asyncio
    async def test_discovery_fallback(self, wallet):
        server = Server(send_header=False)
        config = Config(http=HttpConfig(discovery_url=DISCOVERY_URL), payment=PaymentConfig(check_balance=False))
        async with _session(server, wallet, config) as session:
            sent = await session.send("POST", URL)

        assert server.discovery == [{"endpoint": "/api/ai/summarize", "method": "POST"}]
        assert sent.negotiator.state == NegotiationState.REQUIREMENTS_FETCHED

    @pytest.mark.asyncio
    async def test_missing_requirements_fail(self, wallet):
        server = Server(send_header=False)
        async with _session(server, wallet) as session:
            sent = await session.send("POST", URL)
            result = await session.fetch_with_payment("POST", URL)

        assert sent.negotiator.state == NegotiationState.FAILED
        assert result.success is False
        assert result.error_code == "MALFORMED_REQUIREMENTS"
        assert server.paid == []

    @pytest.mark.asyncio
    async def test_abandon(self, wallet):
        async with _session(Server(), wallet) as session:
            sent = await session.send("POST", URL)
            session.abandon(sent.payment_id)

            assert sent.payment_id not in session.store
            assert session.negotiator(sent.payment_id) is None

    @pytest.mark.asyncio
    async def test_external_envelope_retry(self, wallet):
        server = Server()
        async with _session(server, wallet) as session:
            sent = await session.send("POST", URL)
            negotiator = sent.negotiator
            negotiator.select_network()
            envelope = await negotiator.sign()

            outcome = await session.retry(sent.payment_id, envelope)

        assert outcome.settlement.transaction_hash == "0xfeed"
        assert server.paid[0][1] == envelope
        assert session.negotiator(sent.payment_id) is None

    @pytest.mark.asyncio
    async def test_manually_settled_negotiator_is_pruned(self, wallet):
        async with _session(Server(), wallet, Config(payment=PaymentConfig(check_balance=False))) as session:
            first = await session.send("POST", URL)
            await first.negotiator.run()
            second = await session.send("POST", URL)

            assert first.negotiator.state == NegotiationState.SETTLED
            assert list(session.negotiators) == [second.payment_id]


class TestSessionConfig:
    """Test configuration wiring"""

    @pytest.mark.asyncio
    async def test_custom_headers_and_rpc_override(self, wallet):
        config = Config(
            http=HttpConfig(payment_signature_header="X-PAYMENT"),
            balance=BalanceConfig(rpc_urls={"base": "https://rpc.example.com"}),
        )
        async with PaymentSession(wallet, config=config) as session:
            assert session.catalog.resolve("base").rpc_url == "https://rpc.example.com"
            assert session.retrier.signature_header == "X-PAYMENT"
            assert session.builder.validity_seconds == 3600
