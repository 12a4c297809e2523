"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import base64
import json
import time
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import TYPE_CHECKING, Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from aiohttp import ClientSession, web


if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Callable


def _b64url(data: dict[str, Any]) -> str:
    return base64.urlsafe_b64encode(json.dumps(data).encode()).decode().rstrip("=")


def make_jwt(payload: dict[str, Any]) -> str:
    """Build an unsigned JWT with the given payload."""
    return f"{_b64url({'alg': 'HS256', 'typ': 'JWT'})}.{_b64url(payload)}.signature"


def jwt_expiring_in(minutes: float) -> str:
    """Build a JWT whose exp lies ``minutes`` from now."""
    return make_jwt({"sub": "user-1", "exp": int(time.time() + minutes * 60)})


def device_record(
    device_id: int | str = 1,
    *,
    name: str = "Office",
    ambient: float = 68,
    target: float = 72,
    state: int = 0,
    status: int = 1,
) -> dict[str, Any]:
    """Build a raw device record as returned by the Envi API."""
    return {
        "id": device_id,
        "name": name,
        "ambient_temperature": ambient,
        "current_temperature": target,
        "state": state,
        "status": status,
    }


class FakeChildren:
    """In-memory host child device registry recording every call."""

    def __init__(self, existing: list[str] | None = None) -> None:
        self.children: dict[str, str] = dict.fromkeys(existing or [], "")
        self.events: list[tuple[str, str, Any, str | None]] = []
        self.fail_create: set[str] = set()
        self.fail_delete: set[str] = set()
        self.deleted: list[str] = []
        # Attribute names whose events raise
        self.fail_events: set[str] = set()
        self.fail_enumerate = False

    async def create(self, local_id: str, label: str) -> None:
        if local_id in self.fail_create:
            msg = f"cannot create {local_id}"
            raise RuntimeError(msg)
        self.children[local_id] = label

    async def delete(self, local_id: str) -> None:
        if local_id in self.fail_delete:
            msg = f"cannot delete {local_id}"
            raise RuntimeError(msg)
        self.children.pop(local_id, None)
        self.deleted.append(local_id)

    async def enumerate(self) -> list[str]:
        if self.fail_enumerate:
            msg = "child list unavailable"
            raise RuntimeError(msg)
        return list(self.children)

    async def send_attribute_event(self, local_id: str, name: str, value: Any, unit: str | None = None) -> None:
        if name in self.fail_events:
            msg = f"cannot send {name}"
            raise RuntimeError(msg)
        self.events.append((local_id, name, value, unit))


@dataclass
class ScheduledJob:
    """A job captured by RecordingScheduler."""

    name: str
    callback: Any
    delay_seconds: float | None = None
    interval_minutes: int | None = None
    args: tuple[Any, ...] = ()


class RecordingScheduler:
    """Scheduler that records jobs instead of running them."""

    def __init__(self) -> None:
        self.jobs: dict[str, ScheduledJob] = {}
        self.history: list[ScheduledJob] = []
        self.cancelled: list[str] = []

    def schedule_once(self, name: str, delay_seconds: float, callback: Any, *args: Any) -> None:
        job = ScheduledJob(name=name, callback=callback, delay_seconds=delay_seconds, args=args)
        self.jobs[name] = job
        self.history.append(job)

    def schedule_recurring(self, name: str, interval_minutes: int, callback: Any) -> None:
        job = ScheduledJob(name=name, callback=callback, interval_minutes=interval_minutes)
        self.jobs[name] = job
        self.history.append(job)

    def cancel(self, name: str) -> None:
        self.cancelled.append(name)
        self.jobs.pop(name, None)

    def cancel_all(self) -> None:
        for name in list(self.jobs):
            self.cancel(name)

    async def fire(self, name: str) -> Any:
        """Run a recorded job as if its timer expired."""
        job = self.jobs[name]
        if job.interval_minutes is None:
            del self.jobs[name]
        return await job.callback(*job.args)


@dataclass
class FakeEnviServer:
    """Scriptable stand-in for the Envi cloud API."""

    devices: list[dict[str, Any]] = field(default_factory=lambda: [device_record(1), device_record(2, name="Bedroom")])
    token: str = field(default_factory=lambda: jwt_expiring_in(120))
    login_status: int = HTTPStatus.OK
    login_body: dict[str, Any] | None = None
    # Statuses returned by data endpoints before falling back to 200
    queued_statuses: list[int] = field(default_factory=list)
    login_count: int = 0
    requests: list[tuple[str, str, Any, str | None]] = field(default_factory=list)

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/apis/v1/auth/login", self._login)
        app.router.add_get("/apis/v1/device/list", self._list)
        app.router.add_get("/apis/v1/device/{device_id}", self._device)
        app.router.add_patch("/apis/v1/device/update-temperature/{device_id}", self._update)
        return app

    async def _login(self, request: web.Request) -> web.Response:
        self.login_count += 1
        body = await request.json()
        self.requests.append(("POST", request.path, body, None))
        if self.login_status != HTTPStatus.OK:
            return web.json_response({"status": "error"}, status=self.login_status)
        return web.json_response(self.login_body or {"status": "success", "data": {"token": self.token}})

    def _queued(self) -> int | None:
        return self.queued_statuses.pop(0) if self.queued_statuses else None

    async def _list(self, request: web.Request) -> web.Response:
        self.requests.append(("GET", request.path, None, request.headers.get("Authorization")))
        status = self._queued()
        if status is not None:
            return web.json_response({"status": "error"}, status=status)
        return web.json_response({"status": "success", "data": self.devices})

    async def _device(self, request: web.Request) -> web.Response:
        self.requests.append(("GET", request.path, None, request.headers.get("Authorization")))
        status = self._queued()
        if status is not None:
            return web.json_response({"status": "error"}, status=status)
        device_id = request.match_info["device_id"]
        for device in self.devices:
            if str(device["id"]) == device_id:
                return web.json_response({"status": "success", "data": device})
        return web.json_response({"status": "error", "msg": "not found"}, status=HTTPStatus.NOT_FOUND)

    async def _update(self, request: web.Request) -> web.Response:
        body = await request.json()
        self.requests.append(("PATCH", request.path, body, request.headers.get("Authorization")))
        status = self._queued()
        if status is not None:
            return web.json_response({"status": "error"}, status=status)
        return web.json_response({"status": "success"})

    def data_requests(self, method: str | None = None) -> list[tuple[str, str, Any, str | None]]:
        """Return recorded non-login requests."""
        return [r for r in self.requests if not r[1].endswith("/login") and (method is None or r[0] == method)]


@pytest.fixture
async def mock_session() -> AsyncGenerator[ClientSession]:
    """Create a mock aiohttp ClientSession.

    Yields:
        Mock ClientSession for testing.
    """
    session = AsyncMock(spec=ClientSession)
    session.closed = False

    async def mock_close() -> None:
        session.closed = True

    session.close = mock_close

    yield session

    if not session.closed:
        await session.close()


@pytest.fixture
def mock_response() -> MagicMock:
    """Create a mock aiohttp ClientResponse usable as an async context manager.

    Returns:
        Mock ClientResponse for testing.
    """
    response = MagicMock()
    response.status = HTTPStatus.OK
    response.headers = {}
    response.__aenter__ = AsyncMock(return_value=response)
    response.__aexit__ = AsyncMock(return_value=None)
    return response


@pytest.fixture
def fake_server() -> FakeEnviServer:
    """Create a fake Envi API."""
    return FakeEnviServer()


@pytest.fixture
def children() -> FakeChildren:
    """Create an empty host child registry."""
    return FakeChildren()


@pytest.fixture
def scheduler() -> RecordingScheduler:
    """Create a scheduler that records jobs."""
    return RecordingScheduler()


@pytest.fixture
def token_factory() -> Callable[[float], str]:
    """Get a factory building JWTs that expire the given number of minutes from now."""
    return jwt_expiring_in


@pytest.fixture
async def http_session() -> AsyncGenerator[ClientSession]:
    """Create a real aiohttp ClientSession."""
    async with ClientSession() as session:
        yield session


@pytest.fixture
async def server_url(aiohttp_client: Any, fake_server: FakeEnviServer) -> str:
    """Start the fake Envi API and return its base URL."""
    client = await aiohttp_client(fake_server.app())
    return str(client.make_url("")).rstrip("/")
