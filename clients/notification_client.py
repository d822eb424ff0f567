"""
Outbound email and SMS through the notification gateway.

Each message is one compact JSON POST. The gateway authenticates it by the
X-API-Key header and an X-Signature header holding the hex HMAC-SHA256 of
the exact body bytes. Messages about an invoice carry its number as
"reference" so the gateway's delivery log can be matched to billing records.
"""

import json
import logging

import requests

from clients.gateways.base import hmac_sha256_hex

logger = logging.getLogger(__name__)


class NotificationGatewayError(Exception):
    """The gateway was unreachable or refused the message."""


class NotificationGatewayClient:
    """Signed JSON client for the notification gateway."""

    def __init__(self, gateway_url: str, api_key: str, hmac_secret: str, timeout: float = 10):
        for name, value in (("gateway_url", gateway_url), ("api_key", api_key), ("hmac_secret", hmac_secret)):
            if not value:
                raise ValueError(f"{name} is required")

        self.gateway_url = gateway_url
        self.api_key = api_key
        self.hmac_secret = hmac_secret
        self.timeout = timeout

    def _deliver(self, message: dict, reference: str | None) -> None:
        if reference:
            message["reference"] = reference
        body = json.dumps(message, separators=(",", ":")).encode("utf-8")

        try:
            response = requests.post(
                self.gateway_url,
                data=body,
                headers={
                    "Content-Type": "application/json",
                    "X-API-Key": self.api_key,
                    "X-Signature": hmac_sha256_hex(self.hmac_secret, body),
                },
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Notification gateway connection failed: {e}")
            raise NotificationGatewayError(f"Connection failed: {e}")

        try:
            reply = response.json()
        except ValueError:
            logger.error(f"Notification gateway returned invalid JSON: {response.text[:200]}")
            raise NotificationGatewayError("Invalid response from gateway")

        if response.status_code != 200 or not reply.get("success"):
            reason = reply.get("message", "Unknown error")
            logger.error(f"Notification gateway rejected {message['type']} ({reference or 'no reference'}): {reason}")
            raise NotificationGatewayError(f"Gateway error: {reason}")

    def send_email(self, to: str, subject: str, body: str, reference: str | None = None) -> None:
        """Plain-text email. Raises NotificationGatewayError on any failure."""
        self._deliver({"type": "email", "email": to, "subject": subject, "body": body}, reference)
        logger.info(f"Email sent to {to}: {subject}")

    def send_sms(self, to: str, body: str, reference: str | None = None) -> None:
        """
        SMS to an E.164 number.

        Raises:
            ValueError: No number on file (checked before any HTTP call)
            NotificationGatewayError: On gateway failure
        """
        if not to:
            raise ValueError("phone number is required")
        self._deliver({"type": "sms", "phone": to, "body": body}, reference)
        logger.info(f"SMS sent to {to}")
