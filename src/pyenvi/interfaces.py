"""Interfaces of the host-provided collaborators.

The bridge decides when child devices are created, deleted, and updated, when
jobs fire, and what gets persisted. How the host represents those things is
left to implementations of these protocols.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any, Protocol


__all__ = [
    "ChildDeviceRegistry",
    "JobCallback",
    "Scheduler",
    "StateStore",
]

JobCallback = Callable[..., Awaitable[Any]]


class ChildDeviceRegistry(Protocol):
    """Host registry of child entities, one per heater."""

    async def create(self, local_id: str, label: str) -> None:
        """Create a child entity."""

    async def delete(self, local_id: str) -> None:
        """Delete a child entity."""

    async def enumerate(self) -> list[str]:
        """Return local IDs of all existing child entities."""

    async def send_attribute_event(self, local_id: str, name: str, value: Any, unit: str | None = None) -> None:
        """Publish a new attribute value for a child entity."""


class Scheduler(Protocol):
    """Named timer jobs with explicit cancellation.

    Scheduling a job under a name that is already scheduled replaces it.
    """

    def schedule_once(self, name: str, delay_seconds: float, callback: JobCallback, *args: Any) -> None:
        """Run ``callback(*args)`` once after ``delay_seconds``."""

    def schedule_recurring(self, name: str, interval_minutes: int, callback: JobCallback) -> None:
        """Run ``callback()`` on every ``interval_minutes`` boundary of the wall clock."""

    def cancel(self, name: str) -> None:
        """Cancel a job if it is scheduled."""

    def cancel_all(self) -> None:
        """Cancel every scheduled job."""


class StateStore(Protocol):
    """Persistent key-value storage surviving process restarts."""

    def get(self, key: str, default: Any = None) -> Any:
        """Return the stored value for ``key``."""

    def set(self, key: str, value: Any) -> None:
        """Store a JSON-serializable value under ``key``."""
