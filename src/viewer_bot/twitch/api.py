"""Minimal Helix client: EventSub subscriptions and chat messages."""

import logging
from typing import Any, Protocol

import aiohttp

from viewer_bot.config import TwitchConfig
from viewer_bot.errors import UpstreamError
from viewer_bot.twitch.auth import TokenCache
from viewer_bot.twitch.events import Subscription

logger = logging.getLogger(__name__)


class EventSubClient(Protocol):
    async def list_subscriptions(self, user_id: str) -> list[Subscription]: ...

    async def create_subscription(
        self, sub_type: str, condition: dict[str, str], version: str = "1"
    ) -> Subscription: ...

    async def delete_subscription(self, subscription_id: str) -> None: ...


class ChatSender(Protocol):
    async def send_chat_message(self, broadcaster_id: str, text: str) -> None: ...


class HelixClient:
    """Talks to ``api.twitch.tv/helix`` with an app access token."""

    TIMEOUT_SECONDS = 10

    def __init__(self, config: TwitchConfig, tokens: TokenCache):
        self._config = config
        self._tokens = tokens
        self._api_base = config.api_base.rstrip("/")
        self._session: aiohttp.ClientSession | None = None

    def _client_secret(self) -> str:
        secret = self._config.client_secret
        return secret.get_secret_value() if secret else ""

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

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, str] | None = None,
        payload: dict[str, Any] | None = None,
        retry_on_401: bool = True,
    ) -> tuple[int, Any]:
        """Send a request; on 401 drop the cached token and retry once."""
        client_id = self._config.client_id
        token = await self._tokens.get(client_id, self._client_secret())
        headers = {
            "Client-Id": client_id,
            "Authorization": f"Bearer {token}",
        }

        session = await self._get_session()
        try:
            async with session.request(
                method,
                f"{self._api_base}{path}",
                params=params,
                json=payload,
                headers=headers,
            ) as response:
                status = response.status
                data = None
                if status != 204:
                    try:
                        data = await response.json(content_type=None)
                    except ValueError as e:
                        # Gateways answer 5xx with HTML; error statuses are reported below
                        if status < 400:
                            raise UpstreamError(
                                f"{method} {path} returned {status} with a non-JSON body",
                                status=status,
                            ) from e
        except aiohttp.ClientError as e:
            raise UpstreamError(f"{method} {path} failed: {e}") from e
        except TimeoutError as e:
            raise UpstreamError(f"{method} {path} timed out after {self.TIMEOUT_SECONDS}s") from e

        if status == 401 and retry_on_401:
            self._tokens.invalidate(client_id, self._client_secret())
            return await self._request(method, path, params, payload, retry_on_401=False)

        if status >= 400:
            message = data.get("message", "") if isinstance(data, dict) else ""
            raise UpstreamError(f"{method} {path} returned {status}: {message}", status=status)

        return status, data

    async def list_subscriptions(self, user_id: str) -> list[Subscription]:
        """All subscriptions whose condition references ``user_id``."""
        subscriptions: list[Subscription] = []
        params = {"user_id": user_id}
        while True:
            _, data = await self._request("GET", "/eventsub/subscriptions", params=params)
            for item in data.get("data", []):
                subscriptions.append(Subscription.model_validate(item))
            cursor = (data.get("pagination") or {}).get("cursor")
            if not cursor:
                return subscriptions
            params = {"user_id": user_id, "after": cursor}

    async def create_subscription(
        self, sub_type: str, condition: dict[str, str], version: str = "1"
    ) -> Subscription:
        secret = self._config.webhook_secret
        payload = {
            "type": sub_type,
            "version": version,
            "condition": condition,
            "transport": {
                "method": "webhook",
                "callback": self._config.callback_url,
                "secret": secret.get_secret_value() if secret else "",
            },
        }
        _, data = await self._request("POST", "/eventsub/subscriptions", payload=payload)
        created = Subscription.model_validate(data["data"][0])
        logger.info(f"HELIX: created {sub_type} subscription {created.id} status={created.status}")
        return created

    async def delete_subscription(self, subscription_id: str) -> None:
        await self._request("DELETE", "/eventsub/subscriptions", params={"id": subscription_id})
        logger.info(f"HELIX: deleted subscription {subscription_id}")

    async def send_chat_message(self, broadcaster_id: str, text: str) -> None:
        payload = {
            "broadcaster_id": broadcaster_id,
            "sender_id": self._config.bot_user_id,
            "message": text,
        }
        _, data = await self._request("POST", "/chat/messages", payload=payload)
        result = (data or {}).get("data") or [{}]
        if result[0].get("is_sent") is False:
            reason = (result[0].get("drop_reason") or {}).get("message", "dropped")
            raise UpstreamError(f"Chat message not sent: {reason}")
