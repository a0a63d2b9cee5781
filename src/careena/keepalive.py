"""
Background timers that keep the login healthy.

TokenWatchdog: periodically checks the auth token is still in storage and
forces logout only if it stays missing past a grace window, so a transient
read race during a reload does not log anyone out.

MachineReauth: for unattended machine accounts, logs in again on an
interval to refresh the token. Later failures are logged and retried; a
failure on the very first attempt clears the stored credentials for good.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional

from careena.storage import KeyValueStore, get_json

logger = logging.getLogger(__name__)

MACHINE_CREDENTIALS_KEY = "machine_credentials"


class _Ticker:
    """Runs `tick()` every `interval` seconds on the running loop until stopped."""

    def __init__(self, interval: float):
        self.interval = interval
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def tick(self) -> None:
        raise NotImplementedError

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await self.tick()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None


class TokenWatchdog(_Ticker):
    def __init__(
        self,
        is_authenticated: Callable[[], bool],
        read_token: Callable[[], Optional[str]],
        on_logout: Callable[[], Any],
        interval: float = 30.0,
        grace: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(interval)
        self._is_authenticated = is_authenticated
        self._read_token = read_token
        self._on_logout = on_logout
        self._grace = grace
        self._clock = clock
        self._missing_since: Optional[float] = None

    async def tick(self) -> None:
        self.check()

    def check(self) -> bool:
        """One watchdog pass. Returns True if it forced a logout."""
        if not self._is_authenticated() or self._read_token():
            self._missing_since = None
            return False
        now = self._clock()
        if self._missing_since is None:
            self._missing_since = now
            logger.debug("Auth token missing from storage; waiting out the grace window")
            return False
        if now - self._missing_since < self._grace:
            return False
        logger.info("Auth token still missing after grace window, logging out")
        self._missing_since = None
        self._on_logout()
        return True


class MachineReauth(_Ticker):
    def __init__(
        self,
        store: KeyValueStore,
        login: Callable[[str, str], Awaitable[dict[str, Any]]],
        on_token: Callable[[dict[str, Any]], Any],
        interval: float = 600.0,
    ):
        super().__init__(interval)
        self._store = store
        self._login = login
        self._on_token = on_token
        self.attempts = 0
        self.failures = 0

    def credentials(self) -> Optional[tuple[str, str]]:
        creds = get_json(self._store, MACHINE_CREDENTIALS_KEY)
        if not isinstance(creds, dict):
            return None
        code, password = creds.get("doctor_code"), creds.get("password")
        if not code or not password:
            return None
        return str(code), str(password)

    async def tick(self) -> None:
        await self.reauthenticate()

    async def reauthenticate(self) -> bool:
        creds = self.credentials()
        if creds is None:
            return False
        first = self.attempts == 0
        self.attempts += 1
        try:
            result = await self._login(*creds)
        except Exception as e:
            self.failures += 1
            if first:
                logger.error(f"Machine account login failed at startup, clearing credentials: {e}")
                self._store.remove(MACHINE_CREDENTIALS_KEY)
            else:
                logger.warning(f"Machine account re-authentication failed, will retry: {e}")
            return False
        self._on_token(result)
        return True

    async def begin(self) -> bool:
        """First attempt now, then every `interval` seconds while credentials remain."""
        if self.credentials() is None:
            return False
        ok = await self.reauthenticate()
        if ok:
            self.start()
        return ok
