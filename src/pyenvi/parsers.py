"""Parsing utilities for Envi API responses.

This module converts raw device records from the list and single device
endpoints into data models, and maps them onto the attribute set reported
to the host's child devices.
"""

from __future__ import annotations

from typing import Any

from pyenvi.const import DEVICE_STATUS_AVAILABLE, TEMPERATURE_UNIT
from pyenvi.exceptions import TransientApiError
from pyenvi.models import RemoteDeviceRecord


__all__ = [
    "map_device_attributes",
    "parse_device_list",
    "parse_device_record",
]


def parse_device_record(data: dict[str, Any]) -> RemoteDeviceRecord:
    """Parse a single device record.

    The Envi API names the setpoint ``current_temperature`` and the measured
    room temperature ``ambient_temperature``. ``state`` is 1 when the heater is
    on and ``status`` is 1 when the cloud can reach it.

    Args:
        data: Raw device record in format:
              {"id": ..., "name": str, "ambient_temperature": float,
               "current_temperature": float, "state": 0|1, "status": int}

    Returns:
        RemoteDeviceRecord instance.
    """
    return RemoteDeviceRecord(
        id=str(data.get("id")),
        name=data.get("name") or "",
        ambient_temperature=data.get("ambient_temperature"),
        target_temperature=data.get("current_temperature"),
        power_on=data.get("state") == 1,
        available=data.get("status") == DEVICE_STATUS_AVAILABLE,
        raw=data,
    )


def parse_device_list(data: dict[str, Any] | None) -> list[RemoteDeviceRecord]:
    """Parse the device list response body.

    Args:
        data: Response body in format {"status": "success", "data": [...]}.

    Returns:
        List of RemoteDeviceRecord instances, skipping entries that are not
        objects or have no id.

    Raises:
        TransientApiError: If ``data`` holds something other than a list.
    """
    if not data:
        return []
    items = data.get("data") or []
    if not isinstance(items, list):
        msg = f"Device list is not a list: {type(items).__name__}"
        raise TransientApiError(msg)
    return [parse_device_record(item) for item in items if isinstance(item, dict) and item.get("id") is not None]


def map_device_attributes(record: RemoteDeviceRecord) -> list[tuple[str, Any, str | None]]:
    """Map a device record to host attributes.

    Args:
        record: Parsed device record.

    Returns:
        List of (attribute name, value, unit) tuples in emission order.
    """
    return [
        ("temperature", record.ambient_temperature, TEMPERATURE_UNIT),
        ("heatingSetpoint", record.target_temperature, TEMPERATURE_UNIT),
        ("thermostatMode", record.thermostat_mode, None),
        ("thermostatOperatingState", record.operating_state, None),
        ("switch", "on" if record.power_on else "off", None),
        ("available", record.available, None),
    ]
