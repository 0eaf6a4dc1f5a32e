"""
GitHub webhook signature verification.

GitHub signs each delivery with ``X-Hub-Signature-256: sha256=<hex>``,
an HMAC-SHA256 of the raw request body under the webhook secret.
"""
import hmac
import hashlib
import logging
from collections.abc import Mapping
from typing import Any, Optional

import orjson
from pydantic import BaseModel, Field, ValidationError

from ..exceptions import DecodingError, WebhookSignatureError

logger = logging.getLogger("shipstra.github")

SIGNATURE_HEADER = "X-Hub-Signature-256"
EVENT_HEADER = "X-GitHub-Event"
DELIVERY_HEADER = "X-GitHub-Delivery"
_PREFIX = "sha256="


def sign(secret: str, body: bytes) -> str:
    """Return the ``sha256=`` signature GitHub would send for ``body``."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return _PREFIX + digest


def verify_signature(secret: str, body: bytes, signature: Optional[str]) -> bool:
    """Check a signature header in constant time."""
    if not signature or not signature.startswith(_PREFIX):
        return False
    expected = sign(secret, body).encode("ascii")
    return hmac.compare_digest(expected, signature.strip().encode("utf-8"))


class WebhookEvent(BaseModel):
    event: Optional[str] = None
    delivery: Optional[str] = None
    action: Optional[str] = None
    installation_id: Optional[int] = None
    payload: dict[str, Any] = Field(default_factory=dict)


class WebhookVerifier:
    """Verifies and decodes inbound deliveries for one webhook secret."""

    def __init__(self, secret: str):
        if not secret:
            raise ValueError("webhook secret must be a non-empty string")
        self._secret = secret

    def verify(self, body: bytes, signature: Optional[str]) -> bool:
        return verify_signature(self._secret, body, signature)

    def parse(self, body: bytes, headers: Mapping[str, str]) -> WebhookEvent:
        """Verify a delivery and decode its JSON payload.

        Raises:
            WebhookSignatureError: 400 if unsigned, 401 if the signature is wrong.
            DecodingError: If the verified body is not a JSON object.
        """
        signature = headers.get(SIGNATURE_HEADER)
        if not signature:
            raise WebhookSignatureError("A signature must be provided", 400)
        if not self.verify(body, signature):
            logger.warning(
                "Rejected webhook delivery %s: bad signature",
                headers.get(DELIVERY_HEADER),
            )
            raise WebhookSignatureError("Unauthorized", 401)
        try:
            payload = orjson.loads(body)
        except orjson.JSONDecodeError as err:
            raise DecodingError(f"webhook body is not JSON: {err}") from None
        if not isinstance(payload, dict):
            raise DecodingError("webhook body is not a JSON object")
        installation = payload.get("installation")
        if not isinstance(installation, dict):
            installation = {}
        try:
            return WebhookEvent(
                event=headers.get(EVENT_HEADER),
                delivery=headers.get(DELIVERY_HEADER),
                action=payload.get("action"),
                installation_id=installation.get("id"),
                payload=payload,
            )
        except ValidationError as err:
            raise DecodingError(
                f"webhook body has unexpected fields: {err.error_count()} errors"
            ) from None
