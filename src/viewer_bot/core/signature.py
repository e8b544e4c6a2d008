"""EventSub webhook signature verification."""

import hashlib
import hmac
import logging

from viewer_bot.errors import AuthenticationError

logger = logging.getLogger(__name__)

HMAC_PREFIX = "sha256="


class SignatureVerifier:
    """Checks ``Twitch-Eventsub-Message-Signature`` against the shared secret.

    The HMAC covers ``message_id + timestamp + body`` where ``body`` is the raw
    request bytes exactly as received. Re-serialized JSON will not match.
    """

    def __init__(self, secret: str | bytes):
        if isinstance(secret, str):
            secret = secret.encode()
        if not secret:
            raise ValueError("Webhook secret must not be empty")
        self._secret = secret

    def sign(self, message_id: str, timestamp: str, body: bytes) -> str:
        """Compute the expected signature header value."""
        digest = hmac.new(
            self._secret,
            message_id.encode() + timestamp.encode() + body,
            hashlib.sha256,
        ).hexdigest()
        return HMAC_PREFIX + digest

    def verify(
        self,
        message_id: str | None,
        timestamp: str | None,
        signature: str | None,
        body: bytes,
    ) -> bool:
        """Return True only if every header is present and the signature matches."""
        if not message_id or not timestamp or not signature:
            return False
        expected = self.sign(message_id, timestamp, body)
        return hmac.compare_digest(expected.encode(), signature.encode())

    def require_valid(
        self,
        message_id: str | None,
        timestamp: str | None,
        signature: str | None,
        body: bytes,
    ) -> None:
        """Raise AuthenticationError unless the signature verifies."""
        if not self.verify(message_id, timestamp, signature, body):
            logger.warning(f"SIGNATURE: rejected message_id={message_id}")
            raise AuthenticationError("Invalid webhook signature")
