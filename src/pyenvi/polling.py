"""Batch refresh scheduling with activity-adaptive intervals."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from pyenvi.const import (
    DEFAULT_POLL_MINUTES,
    HEATING_POLL_MINUTES,
    INITIAL_REFRESH_DELAY,
    JOB_INITIAL_REFRESH,
    JOB_REFRESH_ALL,
)
from pyenvi.exceptions import EnviError


if TYPE_CHECKING:
    from pyenvi.api import EnviAPI
    from pyenvi.health import HealthMonitor
    from pyenvi.interfaces import Scheduler
    from pyenvi.registry import DeviceRegistry

_LOGGER = logging.getLogger(__name__)


class PollingController:
    """Keep local device state in sync with the cloud.

    All heaters are refreshed with a single list call on a wall-clock grid.
    While any heater is heating the grid tightens to 2 minutes, and it relaxes
    to the configured interval once all are idle.
    """

    def __init__(
        self,
        api: EnviAPI,
        registry: DeviceRegistry,
        health: HealthMonitor,
        scheduler: Scheduler,
        *,
        poll_minutes: int = DEFAULT_POLL_MINUTES,
        heating_poll_minutes: int = HEATING_POLL_MINUTES,
    ) -> None:
        """Initialize the polling controller.

        Args:
            api: API client used for refreshes.
            registry: Registry receiving refreshed state.
            health: Health monitor holding the polling schedule state.
            scheduler: Scheduler running the refresh jobs.
            poll_minutes: Normal polling interval in minutes.
            heating_poll_minutes: Polling interval while any heater is heating.
        """
        self._api = api
        self._registry = registry
        self._health = health
        self._scheduler = scheduler
        self.poll_minutes = poll_minutes
        self._heating_poll_minutes = heating_poll_minutes

    @property
    def current_interval(self) -> int | None:
        """Get the active polling interval in minutes, None when not scheduled."""
        return self._health.state.current_poll_interval_minutes

    def schedule_polling(self, interval_minutes: int | None = None) -> None:
        """Install the recurring refresh and an immediate initial refresh.

        Args:
            interval_minutes: Normal polling interval. Defaults to ``poll_minutes``.
        """
        if interval_minutes is not None:
            self.poll_minutes = interval_minutes
        minutes = self.poll_minutes

        self._health.set_poll_interval(minutes, minutes)

        _LOGGER.info("Scheduling refresh every %d minute(s)", minutes)
        self._scheduler.cancel(JOB_REFRESH_ALL)
        self._scheduler.schedule_once(JOB_INITIAL_REFRESH, INITIAL_REFRESH_DELAY, self.refresh_all)
        self._scheduler.schedule_recurring(JOB_REFRESH_ALL, minutes, self.refresh_all)

    def cancel_polling(self) -> None:
        """Stop the recurring refresh."""
        self._scheduler.cancel(JOB_REFRESH_ALL)
        self._scheduler.cancel(JOB_INITIAL_REFRESH)
        _LOGGER.debug("Polling cancelled")

    async def refresh_all(self) -> bool:
        """Refresh every heater with one batch call (scheduled callback).

        Returns:
            True if the batch was fetched and applied.
        """
        self._health.mark_refresh()

        try:
            records = await self._api.get_devices()
        except EnviError as exc:
            _LOGGER.warning("Batch refresh failed: %s", exc)
            return False

        _LOGGER.debug("Batch refresh retrieved %d devices", len(records))
        for record in records:
            await self._registry.apply_update(record.id, record)

        self.adjust_interval()
        return True

    async def refresh_one(self, device_id: str) -> bool:
        """Refresh a single heater (scheduled after commands).

        Args:
            device_id: Remote device identifier.

        Returns:
            True if the device state was fetched and applied.
        """
        try:
            record = await self._api.get_device(device_id)
        except EnviError as exc:
            _LOGGER.warning("Device %s state fetch failed: %s", device_id, exc)
            return False

        await self._registry.apply_update(device_id, record)
        return True

    def adjust_interval(self) -> bool:
        """Switch between the heating and normal interval when activity changes.

        Returns:
            True if the recurring refresh was rescheduled.
        """
        state = self._health.state
        heating = self._registry.any_heating()
        current = state.current_poll_interval_minutes or state.normal_poll_interval_minutes
        target = self._heating_poll_minutes if heating else self.poll_minutes

        if current == target:
            return False

        self._health.set_poll_interval(target)
        self._scheduler.cancel(JOB_REFRESH_ALL)
        self._scheduler.schedule_recurring(JOB_REFRESH_ALL, target, self.refresh_all)
        _LOGGER.info("Adjusted polling to %d minute(s) (%s)", target, "heating active" if heating else "all idle")
        return True
