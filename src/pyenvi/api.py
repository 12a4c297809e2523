"""Low-level API client for the Envi cloud endpoints.

Every request is authorized through the TokenManager, retried once after a
forced login on 401/403, and reported to the HealthMonitor exactly once.
"""

from __future__ import annotations

import logging
import time
from http import HTTPStatus
from typing import TYPE_CHECKING, Any, cast

from aiohttp import ClientError, ClientSession, ClientTimeout

from pyenvi.const import (
    DEFAULT_BASE_URL,
    DEFAULT_TIMEOUT,
    DEVICE_LIST_PATH,
    DEVICE_PATH,
    DEVICE_UPDATE_PATH,
    STATUS_SUCCESS,
)
from pyenvi.exceptions import (
    AuthError,
    AuthExpiredError,
    EnviConnectionError,
    EnviError,
    EnviTimeoutError,
    TransientApiError,
)
from pyenvi.parsers import parse_device_list, parse_device_record


if TYPE_CHECKING:
    from types import TracebackType

    from pyenvi.auth import TokenManager
    from pyenvi.health import HealthMonitor
    from pyenvi.models import RemoteDeviceRecord

_LOGGER = logging.getLogger(__name__)

ALLOWED_METHODS = frozenset({"GET", "PATCH", "POST"})
AUTH_RETRY_STATUSES = frozenset({HTTPStatus.UNAUTHORIZED, HTTPStatus.FORBIDDEN})


class EnviAPI:
    """Low-level API client for the Envi heater cloud.

    Example:
        ```python
        async with ClientSession() as session:
            tokens = TokenManager("user@example.com", "pass", session=session)
            api = EnviAPI(token_manager=tokens, session=session)

            devices = await api.get_devices()
            await api.update_device(devices[0].id, temperature=70)
        ```

    Attributes:
        base_url: Base URL for the API (default: https://app-apis.enviliving.com).
    """

    def __init__(
        self,
        *,
        token_manager: TokenManager,
        health: HealthMonitor | None = None,
        session: ClientSession | None = None,
        base_url: str = DEFAULT_BASE_URL,
    ) -> None:
        """Initialize the API client.

        Args:
            token_manager: TokenManager providing bearer tokens.
            health: Optional HealthMonitor recording the outcome of every request.
            session: Optional aiohttp ClientSession. If not provided, one will be
                created when entering the context manager.
            base_url: Base URL for the API. Defaults to the Envi production API.
        """
        self._token_manager = token_manager
        self._health = health
        self._session = session
        self._owns_session = session is None
        self.base_url = base_url.rstrip("/")

    async def __aenter__(self) -> EnviAPI:
        """Enter the context manager, creating a session if needed."""
        if self._session is None:
            self._session = ClientSession()
            self._owns_session = True
        self._token_manager.set_session(self._session)
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Exit the context manager, closing the session if this client created it."""
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def request(
        self,
        method: str,
        path: str,
        *,
        json_data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Make an authenticated API request.

        Handles:
        - Token validation before the call
        - One forced reauthentication and retry on 401/403
        - Health bookkeeping (one success or failure per call)

        Args:
            method: HTTP method (GET, PATCH or POST).
            path: API path (e.g., "/apis/v1/device/list").
            json_data: Optional JSON request body.

        Returns:
            Parsed JSON response body ({} if the body is not labelled JSON).

        Raises:
            ValueError: If the method is not supported.
            RuntimeError: If session is not initialized or is closed.
            AuthError: If no token could be obtained.
            AuthExpiredError: If the request is still rejected after reauthentication.
            TransientApiError: For other failed responses, timeouts and connection errors.
        """
        method = method.upper()
        if method not in ALLOWED_METHODS:
            msg = f"Unsupported method {method}"
            raise ValueError(msg)

        if self._session is None or self._session.closed:
            msg = "Session not initialized. Use 'async with' or provide a session."
            raise RuntimeError(msg)

        started = time.monotonic()
        try:
            data = await self._request_with_auth_retry(method, path, json_data)
        except EnviError:
            if self._health is not None:
                self._health.record_failure()
            raise

        if self._health is not None:
            self._health.record_success(int((time.monotonic() - started) * 1000))
        return data

    async def _request_with_auth_retry(
        self,
        method: str,
        path: str,
        json_data: dict[str, Any] | None,
    ) -> dict[str, Any]:
        if not await self._token_manager.ensure_valid():
            msg = f"No token available for {method} {path}"
            raise AuthError(msg)

        retried = False
        while True:
            status, body = await self._send(method, path, json_data)
            if status not in AUTH_RETRY_STATUSES:
                break
            if not retried:
                retried = True
                _LOGGER.warning("Auth issue (%d) - retrying with fresh token", status)
                if await self._token_manager.ensure_valid(force=True):
                    continue
            msg = f"{method} {path} rejected with status {status}"
            raise AuthExpiredError(msg, status=status)

        if not HTTPStatus.OK <= status < HTTPStatus.MULTIPLE_CHOICES:
            msg = f"{method} {path} failed: HTTP {status} body={body}"
            raise TransientApiError(msg, status=status)

        if "status" in body and body["status"] != STATUS_SUCCESS:
            msg = f"{method} {path} returned status {body['status']!r}"
            raise TransientApiError(msg, status=status)

        return body

    async def _send(
        self,
        method: str,
        path: str,
        json_data: dict[str, Any] | None,
    ) -> tuple[int, dict[str, Any]]:
        session = cast("ClientSession", self._session)

        url = f"{self.base_url}{path}"
        headers = {
            "Authorization": f"Bearer {self._token_manager.token}",
            "Accept": "application/json",
        }
        try:
            async with session.request(
                method,
                url,
                json=json_data,
                headers=headers,
                timeout=ClientTimeout(total=DEFAULT_TIMEOUT),
            ) as response:
                body: Any = {}
                # Substring match handles charset parameters
                if "application/json" in response.content_type:
                    try:
                        body = await response.json()
                    except ValueError as exc:
                        msg = f"{method} {path} returned invalid JSON (HTTP {response.status})"
                        raise TransientApiError(msg, status=response.status) from exc
                _LOGGER.debug("%s %s -> %d", method, path, response.status)
                return response.status, body if isinstance(body, dict) else {}

        except TimeoutError as exc:
            msg = f"Request to {url} timed out"
            raise EnviTimeoutError(msg) from exc

        except ClientError as exc:
            msg = f"Connection error for {url}: {exc}"
            raise EnviConnectionError(msg) from exc

    # -------------------------------------------------------------------------
    # Device Endpoints
    # -------------------------------------------------------------------------

    async def get_devices(self) -> list[RemoteDeviceRecord]:
        """Get all heaters of the account with their current state in one call.

        Returns:
            List of RemoteDeviceRecord instances.
        """
        data = await self.request("GET", DEVICE_LIST_PATH)
        return parse_device_list(data)

    async def get_device(self, device_id: str) -> RemoteDeviceRecord:
        """Get the current state of one heater.

        Args:
            device_id: Remote device identifier.

        Returns:
            RemoteDeviceRecord instance.

        Raises:
            TransientApiError: If the response carries no device record.
        """
        data = await self.request("GET", DEVICE_PATH.format(device_id=device_id))
        record = data.get("data")
        if not isinstance(record, dict):
            msg = f"Device {device_id} state missing from response"
            raise TransientApiError(msg)
        record.setdefault("id", device_id)
        return parse_device_record(record)

    async def update_device(
        self,
        device_id: str,
        *,
        temperature: int | None = None,
        state: int | None = None,
    ) -> dict[str, Any]:
        """Update the setpoint and/or power state of one heater.

        Args:
            device_id: Remote device identifier.
            temperature: New setpoint in Fahrenheit.
            state: 1 to switch on, 0 to switch off.

        Returns:
            Parsed response body.

        Raises:
            ValueError: If neither temperature nor state is given.
        """
        payload: dict[str, Any] = {}
        if temperature is not None:
            payload["temperature"] = temperature
        if state is not None:
            payload["state"] = state
        if not payload:
            msg = "Must provide temperature or state to update"
            raise ValueError(msg)

        return await self.request("PATCH", DEVICE_UPDATE_PATH.format(device_id=device_id), json_data=payload)
