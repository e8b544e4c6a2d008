"""Twitch Helix and EventSub integration."""

from .api import ChatSender, EventSubClient, HelixClient
from .auth import AppTokenProvider, TokenCache
from .subscriptions import ReconcileResult, SubscriptionManager

__all__ = [
    "AppTokenProvider",
    "ChatSender",
    "EventSubClient",
    "HelixClient",
    "ReconcileResult",
    "SubscriptionManager",
    "TokenCache",
]
