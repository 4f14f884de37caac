"""Exceptions raised by the analytics engine.

``InputError`` and ``StoreUnavailable`` are **public**: they propagate to
the immediate caller, who decides whether to retry.  Empty inputs are not
errors: ROI, forecast and monitor calls return neutral defaults instead.
"""

from __future__ import annotations

from typing import Any


class AnalyticsError(Exception):
    """Base exception for all analytics-engine errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = details or {}


class InputError(AnalyticsError):
    """Raised when an event or signal is malformed (negative count, unknown channel...).

    Always raised before any counter is touched.
    """


class StoreUnavailable(AnalyticsError):
    """Raised when the underlying store cannot be read or written.

    The transaction has been rolled back; no partial increment is visible.
    """
