"""Tracking error taxonomy."""

from __future__ import annotations


class TrackingError(Exception):
    """Base class for tracking failures."""


class MissingReferenceError(TrackingError, LookupError):
    """A route, warehouse or vehicle referenced by an event does not exist."""


class TriggerRejectedError(TrackingError, ValueError):
    """A manual trigger was refused. ``reason`` is shown to the operator."""

    def __init__(self, route_id: str, reason: str) -> None:
        super().__init__(f"Trigger rejected for route {route_id}: {reason}")
        self.route_id = route_id
        self.reason = reason
