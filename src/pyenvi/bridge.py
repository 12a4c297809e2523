"""Orchestrator wiring the Envi components into one bridge instance.

The bridge owns the session, health and device state of one integration
instance; there is no module-level state. Public entry points and scheduled
jobs run under one lock so that only one orchestration callback executes at a
time.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

from pyenvi.api import EnviAPI
from pyenvi.auth import TokenManager
from pyenvi.commands import CommandDispatcher
from pyenvi.config import BridgeConfig, configure_logging
from pyenvi.const import STORE_DEVICE_INSTANCE_ID
from pyenvi.exceptions import EnviError
from pyenvi.health import HealthMonitor
from pyenvi.polling import PollingController
from pyenvi.registry import DeviceRegistry, ReconcileResult
from pyenvi.scheduler import AsyncioScheduler
from pyenvi.storage import MemoryStateStore


if TYPE_CHECKING:
    from types import TracebackType

    from aiohttp import ClientSession

    from pyenvi.interfaces import ChildDeviceRegistry, Scheduler, StateStore

_LOGGER = logging.getLogger(__name__)


@dataclass
class BridgeStatus:
    """Read-only snapshot for the host's status panel.

    Attributes:
        authenticated: Whether a token is held.
        device_count: Number of tracked heaters.
        token_expiry: Token expiry, if known.
        last_refresh: Start of the last batch refresh.
        poll_interval_minutes: Active polling interval.
        average_latency_ms: Rolling average API latency.
        consecutive_errors: API failures since the last success.
        circuit_open: Whether polling is paused by the circuit breaker.
    """

    authenticated: bool
    device_count: int
    token_expiry: datetime | None
    last_refresh: datetime | None
    poll_interval_minutes: int
    average_latency_ms: int | None
    consecutive_errors: int
    circuit_open: bool

    def as_dict(self) -> dict[str, Any]:
        """Return the status as a plain dictionary."""
        return asdict(self)


class EnviBridge:
    """Bridge Envi heaters into a host platform.

    Example:
        ```python
        config = BridgeConfig(username="user@example.com", password="password")

        async with EnviBridge(config, children=my_child_registry) as bridge:
            await bridge.initialize()

            await bridge.set_temperature("12345", 70)
            await bridge.refresh_now()
            print(bridge.status())
        ```

    With the default AsyncioScheduler the bridge keeps polling in the
    background for as long as the event loop runs and the context is open.
    """

    def __init__(
        self,
        config: BridgeConfig,
        children: ChildDeviceRegistry,
        *,
        scheduler: Scheduler | None = None,
        store: StateStore | None = None,
        session: ClientSession | None = None,
    ) -> None:
        """Initialize the bridge.

        Args:
            config: User settings.
            children: Host collaborator owning the child devices.
            scheduler: Optional scheduler. Defaults to an AsyncioScheduler sharing
                the bridge lock. A host scheduler must serialize callbacks itself.
            store: Optional persistent state store. Defaults to an in-memory store.
            session: Optional aiohttp ClientSession. If not provided, one will be
                created when entering the context manager.
        """
        self.config = config
        configure_logging(config)

        self._lock = asyncio.Lock()
        self._store: StateStore = store if store is not None else MemoryStateStore()
        self._owns_scheduler = scheduler is None
        self._scheduler: Scheduler = scheduler if scheduler is not None else AsyncioScheduler(lock=self._lock)

        self._tokens = TokenManager(
            config.username,
            config.password,
            config.base_url,
            session=session,
            scheduler=self._scheduler,
            store=self._store,
            verbose=config.verbose_auth,
        )
        self._health = HealthMonitor(
            self._scheduler,
            store=self._store,
            on_circuit_open=self._handle_circuit_open,
            on_circuit_close=self._handle_circuit_close,
            reauthenticate=self._reauthenticate,
            refresh=self._refresh_after_reset,
        )
        self._api = EnviAPI(
            token_manager=self._tokens,
            health=self._health,
            session=session,
            base_url=config.base_url,
        )
        self._registry = DeviceRegistry(children, store=self._store)
        self._poller = PollingController(
            self._api,
            self._registry,
            self._health,
            self._scheduler,
            poll_minutes=config.poll_minutes,
        )
        self._commands = CommandDispatcher(self._api, self._poller, self._scheduler)

    @property
    def api(self) -> EnviAPI:
        """Get the underlying API client."""
        return self._api

    @property
    def token_manager(self) -> TokenManager:
        """Get the token manager."""
        return self._tokens

    @property
    def health(self) -> HealthMonitor:
        """Get the health monitor."""
        return self._health

    @property
    def registry(self) -> DeviceRegistry:
        """Get the device registry."""
        return self._registry

    @property
    def poller(self) -> PollingController:
        """Get the polling controller."""
        return self._poller

    @property
    def commands(self) -> CommandDispatcher:
        """Get the command dispatcher."""
        return self._commands

    async def __aenter__(self) -> EnviBridge:
        """Enter the context manager, creating the HTTP session if needed."""
        await self._api.__aenter__()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Exit the context manager, cancelling all jobs and closing the HTTP session."""
        await self.shutdown()
        await self._api.__aexit__(exc_type, exc_val, exc_tb)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def initialize(self) -> bool:
        """Authenticate, discover heaters and start polling.

        Returns:
            True if authentication succeeded and polling was scheduled.
        """
        async with self._lock:
            return await self._initialize()

    async def update_config(self, config: BridgeConfig) -> bool:
        """Apply new settings and restart the bridge.

        All jobs are cancelled and the circuit breaker is reset before the
        bridge initializes again.

        Args:
            config: New user settings.

        Returns:
            True if authentication succeeded and polling was scheduled.
        """
        async with self._lock:
            _LOGGER.info("Updated")
            self._scheduler.cancel_all()
            self.config = config
            configure_logging(config)

            self._tokens.username = config.username
            self._tokens.password = config.password
            self._tokens.base_url = config.base_url.rstrip("/")
            self._tokens.verbose = config.verbose_auth
            self._api.base_url = config.base_url.rstrip("/")
            self._poller.poll_minutes = config.poll_minutes

            return await self._initialize()

    async def shutdown(self) -> None:
        """Cancel every scheduled job."""
        self._scheduler.cancel_all()
        if self._owns_scheduler and isinstance(self._scheduler, AsyncioScheduler):
            await self._scheduler.close()

    async def _initialize(self) -> bool:
        self._tokens.device_instance_id = self._ensure_device_instance_id()
        self._health.reset()

        if not await self._tokens.ensure_valid():
            _LOGGER.warning("Not authenticated; polling not started")
            return False

        # A restored session keeps its proactive refresh
        self._tokens.schedule_proactive_refresh()
        await self._discover()
        self._poller.schedule_polling(self.config.poll_minutes)
        return True

    def _ensure_device_instance_id(self) -> str:
        if self.config.device_id_override:
            return self.config.device_id_override

        device_instance_id = self._store.get(STORE_DEVICE_INSTANCE_ID)
        if not device_instance_id:
            device_instance_id = uuid.uuid4().hex
            self._store.set(STORE_DEVICE_INSTANCE_ID, device_instance_id)
            _LOGGER.debug("Generated device instance ID %s", device_instance_id)
        return device_instance_id

    # -------------------------------------------------------------------------
    # Discovery and refresh
    # -------------------------------------------------------------------------

    async def discover(self) -> ReconcileResult | None:
        """Fetch the device list and reconcile child devices.

        Returns:
            ReconcileResult, or None if the device list could not be fetched.
        """
        async with self._lock:
            return await self._discover()

    async def _discover(self) -> ReconcileResult | None:
        try:
            records = await self._api.get_devices()
        except EnviError as exc:
            _LOGGER.warning("Device discovery error: %s", exc)
            return None
        return await self._registry.reconcile(records, remove_orphans=self.config.remove_orphans)

    async def refresh_now(self) -> bool:
        """Refresh all heaters immediately (the manual "Refresh Now" trigger)."""
        async with self._lock:
            _LOGGER.info("Manual refresh triggered")
            return await self._poller.refresh_all()

    async def refresh_device(self, device_id: str) -> bool:
        """Refresh one heater immediately."""
        async with self._lock:
            return await self._poller.refresh_one(device_id)

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    async def set_temperature(self, device_id: str, value: Any) -> bool:
        """Set the heating setpoint of a heater (50-85°F)."""
        async with self._lock:
            return await self._commands.set_temperature(device_id, value)

    async def turn_on(self, device_id: str) -> bool:
        """Switch a heater on."""
        async with self._lock:
            return await self._commands.turn_on(device_id)

    async def turn_off(self, device_id: str) -> bool:
        """Switch a heater off."""
        async with self._lock:
            return await self._commands.turn_off(device_id)

    async def set_thermostat_mode(self, device_id: str, mode: str) -> bool:
        """Set a heater's mode to ``heat`` or ``off``."""
        async with self._lock:
            return await self._commands.set_thermostat_mode(device_id, mode)

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    def status(self) -> BridgeStatus:
        """Get a snapshot for the status panel."""
        state = self._health.state
        return BridgeStatus(
            authenticated=self._tokens.has_token,
            device_count=len(self._registry),
            token_expiry=self._tokens.token_expiry,
            last_refresh=state.last_refresh_time,
            poll_interval_minutes=state.current_poll_interval_minutes or state.normal_poll_interval_minutes,
            average_latency_ms=state.average_latency_ms,
            consecutive_errors=state.consecutive_failures,
            circuit_open=state.circuit_open,
        )

    # -------------------------------------------------------------------------
    # Health callbacks
    # -------------------------------------------------------------------------

    def _handle_circuit_open(self) -> None:
        self._poller.cancel_polling()

    def _handle_circuit_close(self) -> None:
        self._poller.schedule_polling()

    async def _reauthenticate(self) -> bool:
        return await self._tokens.ensure_valid(force=True)

    async def _refresh_after_reset(self) -> None:
        await self._poller.refresh_all()
