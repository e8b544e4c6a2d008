"""Exception types shared across the bot."""


class ViewerBotError(Exception):
    """Base class for errors raised by viewer_bot."""


class AuthenticationError(ViewerBotError):
    """Webhook signature missing or wrong. Rejected, never retried."""


class ValidationError(ViewerBotError):
    """Inbound payload is malformed or lacks required event fields."""


class UpstreamError(ViewerBotError):
    """A provider call (Helix, token endpoint, completion API) failed."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status

    @property
    def is_conflict(self) -> bool:
        return self.status == 409

    @property
    def is_unauthorized(self) -> bool:
        return self.status == 401
