"""Heater commands with local validation and confirmation refresh."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from pyenvi.const import CONFIRMATION_REFRESH_DELAY, JOB_REFRESH_DEVICE, SETPOINT_MAX, SETPOINT_MIN
from pyenvi.exceptions import EnviError, ValidationError


if TYPE_CHECKING:
    from pyenvi.api import EnviAPI
    from pyenvi.interfaces import Scheduler
    from pyenvi.polling import PollingController

_LOGGER = logging.getLogger(__name__)


def validate_setpoint(value: Any) -> int:
    """Validate a heating setpoint.

    Args:
        value: Requested setpoint in Fahrenheit.

    Returns:
        The setpoint as an integer.

    Raises:
        ValidationError: If the value is not a number or is outside 50-85.
    """
    try:
        temperature = int(value)
    except (TypeError, ValueError) as exc:
        msg = f"Temperature {value!r} is not a number"
        raise ValidationError(msg, parameter_name="temperature", value=value) from exc
    except OverflowError as exc:
        msg = f"Temperature {value!r} outside valid range ({SETPOINT_MIN}-{SETPOINT_MAX}°F)"
        raise ValidationError(msg, parameter_name="temperature", value=value) from exc

    if not SETPOINT_MIN <= temperature <= SETPOINT_MAX:
        msg = f"Temperature {temperature}°F outside valid range ({SETPOINT_MIN}-{SETPOINT_MAX}°F)"
        raise ValidationError(msg, parameter_name="temperature", value=temperature)

    return temperature


class CommandDispatcher:
    """Forward on/off and setpoint commands to the cloud.

    Every command that reaches the API is followed ~2 seconds later by a
    refresh of the device, giving the cloud time to apply the change.
    """

    def __init__(self, api: EnviAPI, poller: PollingController, scheduler: Scheduler) -> None:
        """Initialize the dispatcher.

        Args:
            api: API client sending the updates.
            poller: Polling controller performing confirmation refreshes.
            scheduler: Scheduler running the confirmation refreshes.
        """
        self._api = api
        self._poller = poller
        self._scheduler = scheduler

    async def set_temperature(self, device_id: str, value: Any) -> bool:
        """Set the heating setpoint.

        Out-of-range values are logged and dropped without contacting the API.

        Args:
            device_id: Remote device identifier.
            value: Setpoint in Fahrenheit (50-85).

        Returns:
            True if the API accepted the update.
        """
        try:
            temperature = validate_setpoint(value)
        except ValidationError as exc:
            _LOGGER.warning("%s for device %s - rejecting", exc, device_id)
            return False

        return await self._patch(device_id, temperature=temperature)

    async def set_power(self, device_id: str, on: bool) -> bool:
        """Switch a heater on or off.

        Args:
            device_id: Remote device identifier.
            on: True to switch on.

        Returns:
            True if the API accepted the update.
        """
        return await self._patch(device_id, state=1 if on else 0)

    async def turn_on(self, device_id: str) -> bool:
        """Switch a heater on."""
        return await self.set_power(device_id, True)

    async def turn_off(self, device_id: str) -> bool:
        """Switch a heater off."""
        return await self.set_power(device_id, False)

    async def set_thermostat_mode(self, device_id: str, mode: str) -> bool:
        """Set the thermostat mode; only ``heat`` and ``off`` are supported.

        Returns:
            True if the API accepted the update, False for unsupported modes.
        """
        if mode == "heat":
            return await self.turn_on(device_id)
        if mode == "off":
            return await self.turn_off(device_id)
        _LOGGER.warning("Unsupported thermostatMode %s for device %s", mode, device_id)
        return False

    async def _patch(self, device_id: str, **changes: int) -> bool:
        try:
            await self._api.update_device(device_id, **changes)
        except EnviError as exc:
            _LOGGER.warning("Patch failed for device %s body=%s: %s", device_id, changes, exc)
            success = False
        else:
            _LOGGER.info("Patched device %s body=%s", device_id, changes)
            success = True

        self._scheduler.schedule_once(
            JOB_REFRESH_DEVICE.format(device_id=device_id),
            CONFIRMATION_REFRESH_DELAY,
            self._poller.refresh_one,
            device_id,
        )
        return success
