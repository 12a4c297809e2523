"""Python bridge library for Envi smart heaters.

This package polls the Envi cloud API, mirrors heater state into child
devices of a host platform, and forwards on/off and setpoint commands.

The library is organized into layers:
1. **API Layer** (pyenvi.auth, pyenvi.api): Login, token lifecycle and authenticated HTTP calls
2. **Resilience Layer** (pyenvi.health): Latency tracking and circuit breaker
3. **Sync Layer** (pyenvi.registry, pyenvi.polling, pyenvi.commands): Device mirroring,
   adaptive polling and commands
4. **Bridge** (pyenvi.bridge): Wires everything together around host collaborators

Example:
    ```python
    from pyenvi import BridgeConfig, EnviBridge, JsonFileStateStore

    config = BridgeConfig(username="user@example.com", password="password", poll_minutes=5)

    async with EnviBridge(config, children=my_child_registry, store=JsonFileStateStore("state.json")) as bridge:
        await bridge.initialize()
        await bridge.set_temperature("12345", 70)
        print(bridge.status())
    ```
"""

from __future__ import annotations

from pyenvi.api import EnviAPI
from pyenvi.auth import TokenManager, decode_jwt_expiry
from pyenvi.bridge import BridgeStatus, EnviBridge
from pyenvi.commands import CommandDispatcher, validate_setpoint
from pyenvi.config import BridgeConfig, configure_logging
from pyenvi.exceptions import (
    AuthError,
    AuthExpiredError,
    ChildDeviceError,
    EnviConnectionError,
    EnviError,
    EnviTimeoutError,
    TransientApiError,
    ValidationError,
)
from pyenvi.health import HealthMonitor
from pyenvi.interfaces import ChildDeviceRegistry, Scheduler, StateStore
from pyenvi.models import HealthState, LocalDeviceState, RemoteDeviceRecord, Session
from pyenvi.parsers import map_device_attributes, parse_device_list, parse_device_record
from pyenvi.polling import PollingController
from pyenvi.registry import DeviceRegistry, ReconcileResult
from pyenvi.scheduler import AsyncioScheduler
from pyenvi.storage import JsonFileStateStore, MemoryStateStore


__version__ = "0.1.0"

__all__ = [
    "AsyncioScheduler",
    "AuthError",
    "AuthExpiredError",
    "BridgeConfig",
    "BridgeStatus",
    "ChildDeviceError",
    "ChildDeviceRegistry",
    "CommandDispatcher",
    "DeviceRegistry",
    "EnviAPI",
    "EnviBridge",
    "EnviConnectionError",
    "EnviError",
    "EnviTimeoutError",
    "HealthMonitor",
    "HealthState",
    "JsonFileStateStore",
    "LocalDeviceState",
    "MemoryStateStore",
    "PollingController",
    "ReconcileResult",
    "RemoteDeviceRecord",
    "Scheduler",
    "Session",
    "StateStore",
    "TokenManager",
    "TransientApiError",
    "ValidationError",
    "__version__",
    "configure_logging",
    "decode_jwt_expiry",
    "map_device_attributes",
    "parse_device_list",
    "parse_device_record",
    "validate_setpoint",
]
