"""App access tokens for the Twitch API."""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

import aiohttp

from viewer_bot.errors import UpstreamError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AppToken:
    """Response of the client-credentials grant."""

    access_token: str
    expires_in: int


@dataclass(frozen=True)
class CachedToken:
    value: str
    expires_at: float  # clock() seconds


class AppTokenProvider:
    """Talks to the Twitch OAuth endpoints."""

    TIMEOUT_SECONDS = 10

    def __init__(self, auth_base: str = "https://id.twitch.tv/oauth2", scopes: list[str] | None = None):
        self._auth_base = auth_base.rstrip("/")
        self._scopes = scopes or []
        self._session: aiohttp.ClientSession | None = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create the aiohttp session."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.TIMEOUT_SECONDS)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def close(self) -> None:
        """Close the aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()

    async def get_token(self, client_id: str, client_secret: str) -> AppToken:
        """Run the client-credentials grant."""
        session = await self._get_session()
        form = {
            "client_id": client_id,
            "client_secret": client_secret,
            "grant_type": "client_credentials",
        }
        if self._scopes:
            form["scope"] = " ".join(self._scopes)

        try:
            async with session.post(f"{self._auth_base}/token", data=form) as response:
                try:
                    data = await response.json(content_type=None)
                except ValueError:
                    data = None
                if response.status != 200:
                    message = data.get("message") if isinstance(data, dict) else data
                    raise UpstreamError(f"Failed to get token: {message}", status=response.status)
        except aiohttp.ClientError as e:
            raise UpstreamError(f"Token request failed: {e}") from e
        except TimeoutError as e:
            raise UpstreamError(f"Token request timed out after {self.TIMEOUT_SECONDS}s") from e

        if not isinstance(data, dict) or "access_token" not in data:
            raise UpstreamError("Token response missing access_token", status=200)
        return AppToken(access_token=data["access_token"], expires_in=int(data.get("expires_in", 0)))

    async def validate(self, token: str) -> bool:
        """True if Twitch still accepts the token."""
        session = await self._get_session()
        try:
            async with session.get(
                f"{self._auth_base}/validate",
                headers={"Authorization": f"OAuth {token}"},
            ) as response:
                if response.status == 401:
                    return False
                return response.status == 200
        except aiohttp.ClientError as e:
            raise UpstreamError(f"Token validation failed: {e}") from e
        except TimeoutError as e:
            raise UpstreamError(f"Token validation timed out after {self.TIMEOUT_SECONDS}s") from e


class TokenCache:
    """Process-wide token slots keyed by credential pair.

    A slot is refreshed lazily once fewer than ``buffer_seconds`` remain.
    Concurrent refreshes may both hit the token endpoint; the last one wins
    the slot, which is a single dict assignment.
    """

    def __init__(
        self,
        provider: AppTokenProvider,
        buffer_seconds: float = 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._provider = provider
        self._buffer = buffer_seconds
        self._clock = clock
        self._slots: dict[tuple[str, str], CachedToken] = {}

    async def get(self, client_id: str, client_secret: str) -> str:
        key = (client_id, client_secret)
        cached = self._slots.get(key)
        now = self._clock()
        if cached is not None and cached.expires_at - now >= self._buffer:
            return cached.value

        token = await self._provider.get_token(client_id, client_secret)
        self._slots[key] = CachedToken(
            value=token.access_token,
            expires_at=self._clock() + token.expires_in,
        )
        logger.info(f"TOKEN: refreshed app token for client {client_id} (expires_in={token.expires_in}s)")
        return token.access_token

    def invalidate(self, client_id: str, client_secret: str) -> None:
        """Drop a slot, e.g. after the API answered 401."""
        if self._slots.pop((client_id, client_secret), None) is not None:
            logger.info(f"TOKEN: invalidated app token for client {client_id}")
