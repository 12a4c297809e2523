"""Token lifecycle management for the Envi API."""

from __future__ import annotations

import asyncio
import base64
import json
import logging
from datetime import UTC, datetime
from http import HTTPStatus
from typing import TYPE_CHECKING, Any

from aiohttp import ClientError, ClientSession, ClientTimeout

from pyenvi.const import (
    BASE64_PADDING_MODULO,
    DEFAULT_BASE_URL,
    DEFAULT_TIMEOUT,
    DEVICE_TYPE,
    JOB_REFRESH_TOKEN,
    JWT_MIN_PARTS,
    LOGIN_PATH,
    LOGIN_TYPE,
    SESSION_MAX_AGE_MINUTES,
    STATUS_SUCCESS,
    STORE_SESSION,
    TOKEN_REFRESH_LEAD_MINUTES,
    TOKEN_REFRESH_MIN_REMAINING_MINUTES,
)
from pyenvi.exceptions import AuthError, EnviConnectionError, EnviError, EnviTimeoutError
from pyenvi.models import Session


if TYPE_CHECKING:
    from collections.abc import Callable

    from pyenvi.interfaces import Scheduler, StateStore

_LOGGER = logging.getLogger(__name__)

AUTH_TROUBLESHOOTING = (
    "Troubleshooting tips: (1) Verify email/password in the official Envi app. "
    "(2) Remove the device ID override so a fresh ID is generated. "
    "(3) Ensure no VPN or firewall is blocking the Envi API. "
    "(4) Turn on verbose auth logging."
)


def decode_jwt_expiry(token: str | None) -> int | None:
    """Decode the ``exp`` claim of a JWT without verifying it.

    Args:
        token: JWT in format header.payload.signature.

    Returns:
        Expiry in milliseconds since epoch, or None if the token is malformed
        or carries no ``exp`` claim.
    """
    if not token:
        return None
    try:
        parts = token.split(".")
        if len(parts) < JWT_MIN_PARTS:
            _LOGGER.debug("Invalid JWT format: expected at least %d parts, got %d", JWT_MIN_PARTS, len(parts))
            return None

        payload = parts[1]

        # Add base64 padding if needed
        padding = BASE64_PADDING_MODULO - len(payload) % BASE64_PADDING_MODULO
        if padding != BASE64_PADDING_MODULO:
            payload += "=" * padding

        decoded: Any = json.loads(base64.urlsafe_b64decode(payload).decode("utf-8"))
        exp = decoded.get("exp") if isinstance(decoded, dict) else None
        return int(exp * 1000) if exp else None
    except (ValueError, TypeError, UnicodeDecodeError) as exc:
        _LOGGER.warning("JWT parse error: %s", exc)
        return None


class TokenManager:
    """Own the login, token validity and proactive refresh of an Envi session.

    Authentication failures never escape ``ensure_valid``: they are logged with
    troubleshooting hints and reported as ``False``, and the next API call tries
    again.

    Example:
        ```python
        async with ClientSession() as http:
            tokens = TokenManager(
                username="user@example.com",
                password="password",
                session=http,
                scheduler=AsyncioScheduler(),
                device_instance_id=uuid.uuid4().hex,
            )
            if await tokens.ensure_valid():
                print(tokens.token_expiry)
        ```

    Attributes:
        username: Account email used to log in.
        password: Account password used to log in.
        base_url: Base URL for the API (without trailing slash).
        device_instance_id: Stable identifier of this client sent with every login.
        verbose: Log login response bodies at debug level.
    """

    def __init__(
        self,
        username: str,
        password: str,
        base_url: str = DEFAULT_BASE_URL,
        *,
        session: ClientSession | None = None,
        scheduler: Scheduler | None = None,
        store: StateStore | None = None,
        device_instance_id: str = "",
        verbose: bool = False,
        on_session_updated: Callable[[Session], None] | None = None,
    ) -> None:
        """Initialize the token manager.

        A session persisted in ``store`` is restored, so a restart does not force
        a new login while the previous token is still young enough.

        Args:
            username: Account email.
            password: Account password.
            base_url: Base URL for the API.
            session: aiohttp ClientSession used for login requests.
            scheduler: Scheduler for the proactive refresh job. Without one no
                refresh is scheduled and tokens are renewed on demand.
            store: Optional state store persisting the session.
            device_instance_id: Stable identifier of this client.
            verbose: Log login response bodies at debug level.
            on_session_updated: Optional callback invoked after every successful login.
        """
        self.username = username
        self.password = password
        self.base_url = base_url.rstrip("/")
        self.device_instance_id = device_instance_id
        self.verbose = verbose

        self._session = session
        self._scheduler = scheduler
        self._store = store
        self._on_session_updated = on_session_updated
        self._auth_lock = asyncio.Lock()
        self._current: Session | None = None

        if store is not None:
            stored = store.get(STORE_SESSION)
            if stored:
                self._current = Session.from_dict(stored)

    def set_session(self, session: ClientSession) -> None:
        """Set the aiohttp session used for login requests."""
        self._session = session

    @property
    def current_session(self) -> Session | None:
        """Get the active session, if any."""
        return self._current

    @property
    def token(self) -> str | None:
        """Get the bearer token, if any."""
        return self._current.token if self._current is not None else None

    @property
    def has_token(self) -> bool:
        """Check whether a token is held."""
        return self._current is not None

    @property
    def token_expiry(self) -> datetime | None:
        """Get the token expiry, if known."""
        return self._current.expires_at if self._current is not None else None

    def needs_reauthentication(self) -> bool:
        """Check whether the held token should be replaced.

        Returns:
            True if there is no session or it is older than 60 minutes.
        """
        if self._current is None:
            return True
        return self._current.age_seconds > SESSION_MAX_AGE_MINUTES * 60

    async def ensure_valid(self, *, force: bool = False) -> bool:
        """Ensure a valid token is held, logging in when needed.

        Must be called before every outbound API call.

        Args:
            force: Log in even if the held token looks valid.

        Returns:
            True if a valid token is now held.
        """
        if not force and not self.needs_reauthentication():
            return True

        async with self._auth_lock:
            # Another caller may have logged in while we waited
            if not force and not self.needs_reauthentication():
                return True

            username = (self.username or "").strip()
            if not username or not self.password:
                _LOGGER.warning("Missing username/password for authentication")
                return False

            _LOGGER.debug("Authenticating with Envi API (device_id=%s)", self.device_instance_id)
            try:
                await self.login(username, self.password, self.device_instance_id)
            except EnviError as exc:
                _LOGGER.warning("Authentication failed: %s", exc)
                _LOGGER.warning(AUTH_TROUBLESHOOTING)
                self.clear()
                return False
            return True

    async def login(self, username: str, password: str, device_instance_id: str) -> Session:
        """Log in with credentials and install the resulting session.

        Args:
            username: Account email.
            password: Account password.
            device_instance_id: Stable identifier of this client.

        Returns:
            The new Session.

        Raises:
            AuthError: If the response is not 200 with a success status and a token.
            EnviTimeoutError: If the request times out.
            EnviConnectionError: If a connection error occurs.
            RuntimeError: If no aiohttp session is set.
        """
        if self._session is None or self._session.closed:
            msg = "Session not initialized. Use 'async with' or provide a session."
            raise RuntimeError(msg)

        url = f"{self.base_url}{LOGIN_PATH}"
        payload = {
            "username": username,
            "password": password,
            "login_type": LOGIN_TYPE,
            "device_id": device_instance_id,
            "device_type": DEVICE_TYPE,
        }

        try:
            async with self._session.post(
                url,
                json=payload,
                headers={"Accept": "application/json"},
                timeout=ClientTimeout(total=DEFAULT_TIMEOUT),
            ) as response:
                try:
                    body = await response.json(content_type=None)
                except (json.JSONDecodeError, ValueError):
                    body = None

                if self.verbose:
                    _LOGGER.debug("Auth attempt type='%s' status=%d body=%s", DEVICE_TYPE, response.status, body)

                if response.status != HTTPStatus.OK:
                    msg = f"Authentication failed with status {response.status}"
                    raise AuthError(msg)

                if not isinstance(body, dict) or body.get("status") != STATUS_SUCCESS:
                    msg = f"Authentication rejected: {body}"
                    raise AuthError(msg)

                token = (body.get("data") or {}).get("token")
                if not token:
                    msg = "Auth succeeded but token missing"
                    raise AuthError(msg)

        except TimeoutError as exc:
            msg = "Authentication request timed out"
            raise EnviTimeoutError(msg) from exc

        except ClientError as exc:
            msg = f"Failed to connect to API: {exc}"
            raise EnviConnectionError(msg) from exc

        session = Session(
            token=token,
            issued_at=datetime.now(UTC),
            expires_at_ms=decode_jwt_expiry(token),
            device_instance_id=device_instance_id,
        )
        self._install(session)

        remaining = session.minutes_until_expiry()
        if remaining is not None:
            _LOGGER.info("Authentication success, token expires in %d minutes", remaining)
            self.schedule_proactive_refresh()
        else:
            _LOGGER.info("Authentication success")

        return session

    def schedule_proactive_refresh(self) -> bool:
        """Schedule a forced login 5 minutes before the token expires.

        Nothing is scheduled when the expiry is unknown or 10 minutes or less
        remain; the next call will then reauthenticate on demand.

        Returns:
            True if a refresh job was scheduled.
        """
        if self._current is None or self._scheduler is None:
            return False

        remaining = self._current.minutes_until_expiry()
        if remaining is None or remaining <= TOKEN_REFRESH_MIN_REMAINING_MINUTES:
            return False

        refresh_minutes = remaining - TOKEN_REFRESH_LEAD_MINUTES
        _LOGGER.debug("Scheduling token refresh in %d minutes", refresh_minutes)
        self._scheduler.schedule_once(JOB_REFRESH_TOKEN, refresh_minutes * 60, self.refresh_token)
        return True

    async def refresh_token(self) -> bool:
        """Proactively replace the token (scheduled callback)."""
        _LOGGER.info("Proactive token refresh triggered")
        return await self.ensure_valid(force=True)

    def clear(self) -> None:
        """Drop the current session."""
        self._current = None
        if self._store is not None:
            self._store.set(STORE_SESSION, None)
        _LOGGER.debug("Authentication state cleared")

    def _install(self, session: Session) -> None:
        self._current = session
        if self._store is not None:
            self._store.set(STORE_SESSION, session.to_dict())
        if self._on_session_updated is not None:
            self._on_session_updated(session)
