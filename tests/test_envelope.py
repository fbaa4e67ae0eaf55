"""Tests for payment and settlement headers."""

import base64
import json

import pytest

from x402pay.financial.envelope import (
    PaymentAuthorization,
    PaymentEnvelope,
    SettlementProof,
    decode_payment_header,
    decode_settlement_header,
    encode_base64_json,
    encode_payment_header,
    encode_settlement_header,
)

from conftest import PAY_TO, TEST_ADDRESS


def _envelope() -> PaymentEnvelope:
    return PaymentEnvelope(
        network="eip155:8453",
        authorization=PaymentAuthorization(
            from_address=TEST_ADDRESS,
            to=PAY_TO,
            value=10000,
            valid_after=0,
            valid_before=1700000300,
            nonce="0x" + "00" * 32,
        ),
        signature="0x" + "ab" * 65,
    )


class TestPaymentHeader:
    """Test the PAYMENT-SIGNATURE header"""

    def test_wire_format(self):
        header = encode_payment_header(_envelope())
        data = json.loads(base64.b64decode(header))

        assert data["x402Version"] == 2
        assert data["scheme"] == "exact"
        assert data["network"] == "eip155:8453"
        payload = data["payload"]
        assert payload["signature"] == "0x" + "ab" * 65
        assert payload["authorization"] == {
            "from": TEST_ADDRESS,
            "to": PAY_TO,
            "value": "10000",
            "validAfter": "0",
            "validBefore": "1700000300",
            "nonce": "0x" + "00" * 32,
        }

    def test_decode(self):
        assert decode_payment_header(encode_payment_header(_envelope())) == _envelope()

    def test_decode_rejects_other_scheme(self):
        header = encode_base64_json({"x402Version": 2, "scheme": "upto", "payload": _envelope().to_dict()})

        with pytest.raises(ValueError, match="Unsupported"):
            decode_payment_header(header)

    def test_decode_rejects_incomplete_authorization(self):
        payload = _envelope().to_dict()
        del payload["authorization"]["nonce"]
        header = encode_base64_json({"x402Version": 2, "scheme": "exact", "payload": payload})

        with pytest.raises(ValueError, match="nonce"):
            decode_payment_header(header)


class TestSettlementHeader:
    """Test the PAYMENT-RESPONSE header"""

    def test_decode(self):
        header = encode_settlement_header(
            SettlementProof(transaction_hash="0xdead", network="eip155:8453", payer=TEST_ADDRESS)
        )
        proof = decode_settlement_header(header)

        assert proof.transaction_hash == "0xdead"
        assert proof.network == "eip155:8453"
        assert proof.payer == TEST_ADDRESS
        assert proof.success is True

    def test_missing_network_uses_default(self):
        header = encode_base64_json({"success": True, "transactionHash": "0xbeef"})

        assert decode_settlement_header(header, default_network="base").network == "base"
        assert decode_settlement_header(header) is None

    @pytest.mark.parametrize("value", [None, "", "not base64!", encode_base64_json({"success": True})])
    def test_unavailable(self, value):
        assert decode_settlement_header(value, default_network="base") is None
