"""Tests for the payment requirements document parser."""

import pytest

from x402pay.financial.envelope import encode_base64_json
from x402pay.financial.requirements import (
    PaymentRequiredDocument,
    decode_payment_required_header,
    encode_payment_required_header,
    parse_requirements_document,
)
from x402pay.utils.exceptions import MalformedRequirements

from conftest import BASE_USDC, PAY_TO, make_document, make_option


class TestParseRequirements:
    """Test strict parsing"""

    def test_parse_valid_document(self):
        doc = parse_requirements_document(make_document(make_option(), default_network="base"))

        assert doc.x402_version == 2
        assert doc.default_network == "base"
        option = doc.accepts[0]
        assert option.max_amount_required == "10000"
        assert option.pay_to == PAY_TO
        assert option.asset == BASE_USDC
        assert option.max_timeout_seconds == 300
        assert option.mime_type == "application/json"

    def test_integer_amount_is_accepted(self):
        doc = parse_requirements_document(make_document(make_option(amount=25000)))

        assert doc.accepts[0].max_amount_required == "25000"

    def test_extra_aliases(self):
        option = make_option(extra={"tokenName": "USDC", "tokenVersion": "2", "networkName": "base"})
        extra = parse_requirements_document(make_document(option)).accepts[0].extra

        assert extra.token_name == "USDC"
        assert extra.token_version == "2"
        assert extra.legacy_network_name == "base"

    def test_exact_accepts_filters_other_schemes(self):
        doc = parse_requirements_document(
            make_document(make_option(scheme="upto"), make_option(network="celo"))
        )

        assert len(doc.accepts) == 2
        assert [o.network for o in doc.exact_accepts] == ["celo"]

    @pytest.mark.parametrize(
        "data",
        [
            None,
            "not a dict",
            {"x402Version": 1, "accepts": [make_option()]},
            {"x402Version": 2, "accepts": []},
            {"x402Version": 2},
            make_document(make_option(scheme="upto")),
            make_document(make_option(asset="USDC")),
            make_document(make_option(payTo="0x123")),
            make_document(make_option(amount=None)),
            make_document(make_option(amount="1.5")),
            make_document(make_option(amount="0")),
            make_document(make_option(amount=0)),
            make_document(make_option(amount="010000")),
            make_document(make_option(maxTimeoutSeconds=0)),
            make_document(make_option(network="")),
        ],
    )
    def test_malformed_documents(self, data):
        with pytest.raises(MalformedRequirements) as exc_info:
            parse_requirements_document(data)
        assert exc_info.value.code == "MALFORMED_REQUIREMENTS"

    def test_validation_errors_are_reported(self):
        with pytest.raises(MalformedRequirements) as exc_info:
            parse_requirements_document(make_document(make_option(asset="USDC")))

        errors = exc_info.value.details["errors"]
        assert errors
        assert errors[0]["loc"][-1] == "asset"


class TestPaymentRequiredHeader:
    """Test PAYMENT-REQUIRED header encoding"""

    def test_header_round_trip_keeps_wire_names(self):
        document = PaymentRequiredDocument.model_validate(make_document(default_network="eip155:8453"))
        header = encode_payment_required_header(document)

        assert decode_payment_required_header(header) == document
        wire = document.to_wire()
        assert wire["x402Version"] == 2
        assert wire["defaultNetwork"] == "eip155:8453"
        assert wire["accepts"][0]["maxAmountRequired"] == "10000"
        assert "max_amount_required" not in wire["accepts"][0]

    def test_header_not_base64(self):
        with pytest.raises(MalformedRequirements):
            decode_payment_required_header("%%%not-base64%%%")

    def test_header_wrong_version(self):
        header = encode_base64_json({"x402Version": 3, "accepts": [make_option()]})

        with pytest.raises(MalformedRequirements):
            decode_payment_required_header(header)
