"""Viewer Bot: an AI chat participant for Twitch streams."""

__version__ = "0.1.0"
