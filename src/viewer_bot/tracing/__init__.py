"""Tracing module for interaction observability."""

from viewer_bot.tracing.context import TraceContext, TraceStep
from viewer_bot.tracing.store import TraceStore, TraceSummary

__all__ = ["TraceContext", "TraceStep", "TraceStore", "TraceSummary"]
