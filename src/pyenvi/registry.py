"""Local mirror of discovered heaters and their host child devices."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from pyenvi.const import LABEL_PREFIX, LOCAL_ID_PREFIX, STORE_DEVICE_IDS
from pyenvi.exceptions import ChildDeviceError
from pyenvi.models import LocalDeviceState
from pyenvi.parsers import map_device_attributes


if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence

    from pyenvi.interfaces import ChildDeviceRegistry, StateStore
    from pyenvi.models import RemoteDeviceRecord

_LOGGER = logging.getLogger(__name__)


def local_id_for(device_id: str) -> str:
    """Get the child device ID for a remote device ID."""
    return f"{LOCAL_ID_PREFIX}{device_id}"


def device_id_for(local_id: str) -> str | None:
    """Get the remote device ID for a child device ID, or None if it is not ours."""
    if not local_id.startswith(LOCAL_ID_PREFIX):
        return None
    return local_id[len(LOCAL_ID_PREFIX) :]


@dataclass
class ReconcileResult:
    """Outcome of reconciling local devices with a discovery result.

    Attributes:
        created: Remote IDs whose child device was created.
        removed: Remote IDs whose child device was deleted.
        failed: Remote IDs whose create or delete failed.
    """

    created: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


class DeviceRegistry:
    """Map remote heaters to host child devices and forward changed attributes.

    Only this class decides when a child device is created, deleted or updated;
    the host collaborator decides how.

    Example:
        ```python
        registry = DeviceRegistry(children)

        await registry.reconcile(await api.get_devices(), remove_orphans=True)
        for record in await api.get_devices():
            await registry.apply_update(record.id, record)
        ```
    """

    def __init__(self, children: ChildDeviceRegistry, *, store: StateStore | None = None) -> None:
        """Initialize the registry.

        Args:
            children: Host collaborator owning the child devices.
            store: Optional state store persisting the discovered device IDs.
        """
        self._children = children
        self._store = store
        self._devices: dict[str, LocalDeviceState] = {}

        if store is not None:
            for device_id in store.get(STORE_DEVICE_IDS) or []:
                device_id = str(device_id)
                self._devices[device_id] = LocalDeviceState(device_id=device_id, local_id=local_id_for(device_id))

    def __len__(self) -> int:
        """Return the number of tracked devices."""
        return len(self._devices)

    def __iter__(self) -> Iterator[LocalDeviceState]:
        """Iterate over tracked devices."""
        return iter(list(self._devices.values()))

    def __contains__(self, device_id: object) -> bool:
        """Check whether a remote device is tracked."""
        return device_id in self._devices

    @property
    def device_ids(self) -> list[str]:
        """Get tracked remote device IDs."""
        return list(self._devices)

    def get(self, device_id: str) -> LocalDeviceState | None:
        """Get a tracked device."""
        return self._devices.get(device_id)

    def any_heating(self) -> bool:
        """Check whether any tracked device last reported it is heating."""
        return any(
            device.last_known_attributes.get("thermostatOperatingState") == "heating"
            for device in self._devices.values()
        )

    async def reconcile(self, remote_devices: Sequence[RemoteDeviceRecord], *, remove_orphans: bool) -> ReconcileResult:
        """Create child devices for new heaters and optionally delete orphans.

        Existing devices are left untouched. Create and delete failures are
        logged and do not stop the remaining devices from being processed. If
        the host cannot list its children, only untracked heaters get a child
        and orphan removal waits for the next discovery.

        Args:
            remote_devices: Discovery result.
            remove_orphans: Delete tracked devices missing from the discovery result.

        Returns:
            ReconcileResult listing created, removed and failed device IDs.
        """
        result = ReconcileResult()
        active_ids = [record.id for record in remote_devices]
        _LOGGER.info("Discovered %d Envi heater(s): %s", len(active_ids), active_ids)

        try:
            existing: set[str] | None = await self._enumerate_children()
        except ChildDeviceError as exc:
            _LOGGER.warning("Failed to list child devices: %s", exc)
            existing = None

        for record in remote_devices:
            local_id = local_id_for(record.id)
            label = f"{LABEL_PREFIX} {record.name or record.id}"

            known = record.id in self._devices if existing is None else local_id in existing
            if not known:
                try:
                    await self._create_child(local_id, label)
                except ChildDeviceError as exc:
                    _LOGGER.warning("Failed to create child for deviceId=%s: %s", record.id, exc)
                    result.failed.append(record.id)
                    continue
                _LOGGER.info("Created child device %s (%s)", label, local_id)
                result.created.append(record.id)

            if record.id not in self._devices:
                self._devices[record.id] = LocalDeviceState(device_id=record.id, local_id=local_id, label=label)

        if remove_orphans and existing is not None:
            await self._remove_orphans(set(active_ids), existing, result)

        if self._store is not None:
            self._store.set(STORE_DEVICE_IDS, self.device_ids)

        return result

    async def _remove_orphans(self, active_ids: set[str], existing: set[str], result: ReconcileResult) -> None:
        tracked = set(self._devices)
        tracked.update(device_id for device_id in map(device_id_for, existing) if device_id is not None)

        for device_id in sorted(tracked - active_ids):
            local_id = local_id_for(device_id)
            _LOGGER.warning("Removing orphaned child device %s - not in %s", local_id, sorted(active_ids))
            try:
                if local_id in existing:
                    await self._delete_child(local_id)
            except ChildDeviceError as exc:
                _LOGGER.warning("Failed to remove orphaned device %s: %s", local_id, exc)
                result.failed.append(device_id)
                continue
            self._devices.pop(device_id, None)
            result.removed.append(device_id)

    async def apply_update(self, device_id: str, record: RemoteDeviceRecord) -> list[str]:
        """Send attribute events for the values that changed.

        An attribute is sent when it has no recorded value or the new value is
        not equal to the recorded one. A failed send is not recorded, so the
        next refresh retries it.

        Args:
            device_id: Remote device identifier.
            record: Latest device state.

        Returns:
            Names of the attributes that were sent.
        """
        device = self._devices.get(device_id)
        if device is None:
            _LOGGER.warning("Missing child device for %s", device_id)
            return []

        sent: list[str] = []
        for name, value, unit in map_device_attributes(record):
            old_value = device.last_known_attributes.get(name)
            if old_value is not None and old_value == value:
                continue
            if await self._send_event(device, name, value, unit):
                device.last_known_attributes[name] = value
                sent.append(name)

        _LOGGER.debug(
            "Refreshed device %s ambient=%s target=%s state=%s",
            device_id,
            record.ambient_temperature,
            record.target_temperature,
            record.power_on,
        )
        return sent

    async def _send_event(self, device: LocalDeviceState, name: str, value: Any, unit: str | None) -> bool:
        try:
            await self._children.send_attribute_event(device.local_id, name, value, unit)
        except Exception:
            _LOGGER.exception("Error sending %s=%s to %s", name, value, device.local_id)
            return False
        _LOGGER.debug("Event %s=%s sent to %s", name, value, device.local_id)
        return True

    async def _enumerate_children(self) -> set[str]:
        try:
            return set(await self._children.enumerate())
        except ChildDeviceError:
            raise
        except Exception as exc:
            raise ChildDeviceError(str(exc)) from exc

    async def _create_child(self, local_id: str, label: str) -> None:
        try:
            await self._children.create(local_id, label)
        except ChildDeviceError:
            raise
        except Exception as exc:
            raise ChildDeviceError(str(exc), device_id=local_id) from exc

    async def _delete_child(self, local_id: str) -> None:
        try:
            await self._children.delete(local_id)
        except ChildDeviceError:
            raise
        except Exception as exc:
            raise ChildDeviceError(str(exc), device_id=local_id) from exc
