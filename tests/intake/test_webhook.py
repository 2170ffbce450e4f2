"""Tests for webhook payload validation."""

from __future__ import annotations

import json

import pytest

from letterbox.errors import InvalidPayloadError
from letterbox.intake.webhook import parse_webhook_payload


class TestParseWebhookPayload:
    def test_object_envelope(self):
        payload = parse_webhook_payload(
            {
                "envelope": {"to": ["alice@newsletters.app"], "from": "news@example.com"},
                "email": "From: news@example.com\n\nbody",
                "subject": "Hello",
                "from": "News <news@example.com>",
                "attachments": "0",
            }
        )
        assert payload.envelope.to == ["alice@newsletters.app"]
        assert payload.envelope.from_ == "news@example.com"
        assert payload.subject == "Hello"
        assert payload.from_ == "News <news@example.com>"

    def test_json_string_envelope(self):
        payload = parse_webhook_payload(
            {"envelope": json.dumps({"to": ["a@newsletters.app"]}), "email": "raw"}
        )
        assert payload.envelope.to == ["a@newsletters.app"]

    @pytest.mark.parametrize(
        "data",
        [
            {},
            {"email": "raw"},
            {"envelope": {"to": ["a@b.c"]}},
            {"envelope": {"to": ["a@b.c"]}, "email": ""},
        ],
    )
    def test_missing_fields(self, data):
        with pytest.raises(InvalidPayloadError, match="missing required fields"):
            parse_webhook_payload(data)

    def test_bad_envelope_json(self):
        with pytest.raises(InvalidPayloadError, match="Invalid webhook envelope"):
            parse_webhook_payload({"envelope": "{not json", "email": "raw"})

    def test_envelope_without_recipients(self):
        with pytest.raises(InvalidPayloadError, match="invalid field"):
            parse_webhook_payload({"envelope": {"from": "x@y.z"}, "email": "raw"})

    def test_not_a_mapping(self):
        with pytest.raises(InvalidPayloadError, match="expected an object"):
            parse_webhook_payload(["envelope", "email"])
