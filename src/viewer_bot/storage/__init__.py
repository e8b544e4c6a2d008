"""Persistence for chat events and channel settings."""

from viewer_bot.storage.channels import ChannelSettingsStore
from viewer_bot.storage.messages import MessageStore

__all__ = ["ChannelSettingsStore", "MessageStore"]
