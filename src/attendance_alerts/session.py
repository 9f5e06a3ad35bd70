"""Portal session management for the login relay.

SessionManager owns the authorization token: it logs in, persists the token
(and the credentials used to obtain it) under the state directory, and renews
it when the relay answers 401. Renewal is single-flight - every request that
hits a 401 while a refresh is running awaits that same refresh instead of
starting its own.

States:
    VALID       a token is held and believed usable
    REFRESHING  a renewal is in flight
    EXPIRED     no usable token; a login is required
"""

import asyncio
from collections.abc import Callable
from enum import Enum
from pathlib import Path

import requests
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from src.attendance_alerts.errors import (
    AuthenticationError,
    RateLimitError,
    SessionExpiredError,
    TransientError,
)
from src.attendance_alerts.logging import get_logger
from src.attendance_alerts.store import JsonKeyValueStore

logger = get_logger(__name__)

TOKEN_KEY = "authToken"
CREDENTIALS_KEY = "userCredentials"

AuthErrorListener = Callable[[AuthenticationError], None]


class SessionState(str, Enum):
    VALID = "VALID"
    REFRESHING = "REFRESHING"
    EXPIRED = "EXPIRED"


class AuthErrorSubject:
    """Broadcasts authentication failures to subscribed listeners."""

    def __init__(self) -> None:
        self._listeners: list[AuthErrorListener] = []

    def subscribe(self, listener: AuthErrorListener) -> Callable[[], None]:
        """Register a listener; call the returned disposer to unsubscribe."""
        self._listeners.append(listener)

        def dispose() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return dispose

    def notify(self, error: AuthenticationError) -> None:
        for listener in list(self._listeners):
            try:
                listener(error)
            except Exception as e:
                logger.warning("auth_listener_failed", error=str(e))

    def __len__(self) -> int:
        return len(self._listeners)


class SessionManager:
    """Holds the relay token and renews it on demand."""

    def __init__(
        self,
        base_url: str,
        state_dir: str = "data/state",
        http: requests.Session | None = None,
        timeout: float = 30.0,
    ) -> None:
        """Initialize SessionManager.

        Args:
            base_url: Login relay base URL (e.g. https://host/api).
            state_dir: Directory to store the session state file.
            http: Shared requests session; a new one is created if omitted.
            timeout: Per-request timeout in seconds.
        """
        self.base_url = base_url.rstrip("/")
        self.state_file = Path(state_dir) / "portal_session.json"
        self.store = JsonKeyValueStore(self.state_file)
        self.http = http or requests.Session()
        self.timeout = timeout
        self.auth_errors = AuthErrorSubject()
        self._refresh_task: asyncio.Task | None = None

        self._token: str | None = self.store.get(TOKEN_KEY)
        self._state = SessionState.VALID if self._token else SessionState.EXPIRED

        logger.info(
            "session_manager_initialized",
            state_file=str(self.state_file),
            state=self._state.value,
        )

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def token(self) -> str | None:
        return self._token

    def auth_headers(self) -> dict[str, str]:
        return {"Authorization": self._token} if self._token else {}

    def _post_session(self, username: str, password: str) -> str:
        """Blocking call to /get-session, returning the authorization token."""
        url = f"{self.base_url}/get-session"
        try:
            resp = self.http.post(
                url,
                json={"username": username, "password": password},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise TransientError(f"Login relay unreachable: {e}") from e

        if resp.status_code == 429:
            raise RateLimitError("Login relay rate limited")
        if resp.status_code >= 500:
            raise TransientError(f"Login relay error: HTTP {resp.status_code}")

        try:
            data = resp.json()
        except ValueError as e:
            raise AuthenticationError(
                f"Login relay returned non-JSON (HTTP {resp.status_code})"
            ) from e

        if data.get("success") and data.get("authorization"):
            return data["authorization"]
        raise AuthenticationError(data.get("error") or "Login failed due to an unknown error.")

    @retry(
        stop=stop_after_attempt(2),
        wait=wait_fixed(2),
        retry=retry_if_exception_type(TransientError),
        reraise=True,
    )
    async def _request_token(self, username: str, password: str) -> str:
        return await asyncio.to_thread(self._post_session, username, password)

    async def login(self, username: str, password: str) -> str:
        """Log in through the relay and persist token and credentials.

        Raises:
            AuthenticationError: If the relay rejects the credentials.
            TransientError: If the relay could not be reached.
        """
        logger.info("login_started", username=username)
        token = await self._request_token(username, password)
        self._token = token
        self._state = SessionState.VALID
        self.store.set(TOKEN_KEY, token)
        self.store.set(CREDENTIALS_KEY, {"username": username, "password": password})
        logger.info("login_succeeded", username=username)
        return token

    async def ensure_logged_in(self, username: str = "", password: str = "") -> str:
        """Return the held token, logging in with the given credentials if needed."""
        if self._token and self._state is not SessionState.EXPIRED:
            return self._token
        if username and password:
            return await self.login(username, password)
        return await self.refresh()

    async def refresh(self, stale_token: str | None = None) -> str:
        """Renew the token, sharing one in-flight renewal between callers.

        Args:
            stale_token: The token the caller's request was rejected with. If
                a renewal already replaced it, the new token is returned as is.

        Raises:
            AuthenticationError: If renewal failed; stored token and
                credentials are cleared and subscribers are notified.
            TransientError: If the relay was unreachable; nothing is cleared.
        """
        if stale_token is not None and self._token and self._token != stale_token:
            return self._token

        if self._refresh_task is None or self._refresh_task.done():
            self._refresh_task = asyncio.create_task(self._refresh())
        return await asyncio.shield(self._refresh_task)

    async def _refresh(self) -> str:
        self._state = SessionState.REFRESHING
        logger.info("session_refresh_started")

        creds = self.store.get(CREDENTIALS_KEY)
        try:
            if not isinstance(creds, dict) or not creds.get("username"):
                raise SessionExpiredError("No stored credentials to renew the session")
            token = await self._request_token(creds["username"], creds.get("password", ""))
        except TransientError as e:
            # Relay unreachable: keep token and credentials for the next attempt
            self._state = SessionState.VALID if self._token else SessionState.EXPIRED
            logger.warning("session_refresh_deferred", error=str(e))
            raise
        except AuthenticationError as e:
            self._expire(e)
            raise

        self._token = token
        self._state = SessionState.VALID
        self.store.set(TOKEN_KEY, token)
        logger.info("session_refresh_succeeded")
        return token

    def _expire(self, error: AuthenticationError) -> None:
        self._token = None
        self._state = SessionState.EXPIRED
        self.store.delete(TOKEN_KEY, CREDENTIALS_KEY)
        logger.error("session_refresh_failed", error=str(error))
        self.auth_errors.notify(error)

    def logout(self) -> None:
        """Drop the token but keep credentials for an easier next login."""
        self._token = None
        self._state = SessionState.EXPIRED
        self.store.delete(TOKEN_KEY)
        logger.info("session_logged_out")
