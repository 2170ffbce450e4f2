"""Inbound-parse webhook payload validation."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from letterbox.errors import InvalidPayloadError

logger = logging.getLogger(__name__)


class WebhookEnvelope(BaseModel):
    to: list[str]
    from_: str = Field(default="", alias="from")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class WebhookPayload(BaseModel):
    """Fields the email processor needs from an inbound-parse POST."""

    envelope: WebhookEnvelope
    email: str
    subject: str = ""
    from_: str = Field(default="", alias="from")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


def parse_webhook_payload(data: Mapping[str, object]) -> WebhookPayload:
    """Validate a webhook body before any processing.

    ``envelope`` is accepted either as an object or as a JSON-encoded string.

    Raises:
        InvalidPayloadError: If ``envelope.to`` or ``email`` is missing or malformed.
    """
    if not isinstance(data, Mapping):
        raise InvalidPayloadError("Invalid webhook data: expected an object")
    if not data.get("envelope") or not data.get("email"):
        raise InvalidPayloadError("Invalid webhook data: missing required fields: envelope, email")

    fields = dict(data)
    envelope = fields["envelope"]
    if isinstance(envelope, str):
        try:
            fields["envelope"] = json.loads(envelope)
        except json.JSONDecodeError as exc:
            raise InvalidPayloadError(f"Invalid webhook envelope: {exc}") from exc

    try:
        return WebhookPayload.model_validate(fields)
    except ValidationError as exc:
        logger.debug("Rejected webhook payload: %s", exc)
        raise InvalidPayloadError(f"Invalid webhook data: {exc.error_count()} invalid field(s)") from exc
