"""HTTP surface."""

from viewer_bot.web.app import create_app

__all__ = ["create_app"]
