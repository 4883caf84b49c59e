# src/token_relay/refresh_coordinator.py

"""
Single-flight token refresh.

When an access token is rejected, any number of concurrent requests may ask for
a new one at the same moment. The coordinator makes sure exactly one of them
(the leader) exchanges the refresh token while every other caller waits for
that result. Refresh tokens are single-use, so a second concurrent exchange
would invalidate the session.

A rejected refresh token ends the session: the store is cleared and logout
listeners are notified once. A network failure or timeout only fails the
current batch of waiters; the stored refresh token is kept for the next try.
A caller with no refresh token to exchange fails with MissingRefreshTokenError
and nobody else is told: no refresh was attempted, so none was rejected.
"""

import asyncio
import inspect
import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from .credential_store import CredentialPair, CredentialStore
from .errors import (
    MissingRefreshTokenError,
    RefreshFailedError,
    RefreshNetworkError,
    RefreshTimeoutError,
    mask_credential,
    requires_reauthentication,
)
from .timeout_config import TimeoutConfig

lib_logger = logging.getLogger("token_relay")

LogoutListener = Callable[[RefreshFailedError], Union[None, Awaitable[None]]]

_UNSET: Any = object()


class RefreshState(Enum):
    IDLE = "idle"
    REFRESHING = "refreshing"


class RefreshCoordinator:
    """
    Owns the refresh state machine for one credential store.

    Share one instance between every dispatcher that uses the same store.

    Args:
        store: Where the current credential pair lives
        identity_service: Object with `async refresh(refresh_token) -> CredentialPair`
        timeout: Max seconds for one refresh exchange. Defaults to
            TimeoutConfig.refresh(); None or a value <= 0 disables the limit.
    """

    def __init__(
        self,
        store: CredentialStore,
        identity_service: Any,
        timeout: Optional[float] = _UNSET,
    ):
        self._store = store
        self._identity_service = identity_service
        if timeout is _UNSET:
            timeout = TimeoutConfig.refresh()
        # Same convention as TIMEOUT_REFRESH: zero or negative means no limit
        self._timeout = timeout if timeout is not None and timeout > 0 else None

        # Guards state, waiters and the store writes that end a refresh
        self._lock: asyncio.Lock = asyncio.Lock()
        self._state: RefreshState = RefreshState.IDLE
        self._waiters: List[asyncio.Future] = []
        self._refresh_task: Optional[asyncio.Task] = None
        self._refresh_start_time: Optional[float] = None

        self._logout_listeners: List[LogoutListener] = []

        # Statistics
        self._total_refreshes: int = 0
        self._successful_refreshes: int = 0
        self._failed_refreshes: int = 0
        self._rejected_refreshes: int = 0
        self._timeout_refreshes: int = 0
        self._shortcut_hits: int = 0

    @property
    def state(self) -> RefreshState:
        return self._state

    def add_logout_listener(self, listener: LogoutListener) -> None:
        """Register a callback fired once per refresh failure that requires a new login."""
        if listener not in self._logout_listeners:
            self._logout_listeners.append(listener)

    def remove_logout_listener(self, listener: LogoutListener) -> None:
        if listener in self._logout_listeners:
            self._logout_listeners.remove(listener)

    async def acquire(self, rejected_token: Optional[str]) -> str:
        """
        Get an access token newer than `rejected_token`.

        Becomes the leader and starts a refresh if none is running, otherwise
        joins the refresh in flight. If the store already holds a different
        access token (a refresh finished after the rejected request was sent),
        that token is returned without another exchange.

        Args:
            rejected_token: The access token the failed request carried (None if
                the request went out without one)

        Returns:
            The new access token

        Raises:
            RefreshRejectedError: the session is over; the store has been cleared
            MissingRefreshTokenError: nothing to refresh with; only this caller is told
            RefreshNetworkError: the refresh could not complete this time
        """
        async with self._lock:
            if self._state is RefreshState.REFRESHING:
                waiter = asyncio.get_running_loop().create_future()
                self._waiters.append(waiter)
                lib_logger.debug(
                    f"[RefreshCoordinator] Joined refresh in progress. "
                    f"Waiters: {len(self._waiters)}"
                )
            else:
                current = self._store.get()

                if current and current.access_token != rejected_token:
                    self._shortcut_hits += 1
                    lib_logger.debug(
                        f"[RefreshCoordinator] Token {mask_credential(rejected_token)} already "
                        f"replaced by {mask_credential(current.access_token)}; no refresh needed"
                    )
                    return current.access_token

                refresh_token = current.refresh_token if current else None
                if not refresh_token:
                    self._store.clear()
                    lib_logger.warning(
                        "[RefreshCoordinator] No refresh token stored; login required"
                    )
                    raise MissingRefreshTokenError()

                waiter = asyncio.get_running_loop().create_future()
                self._waiters.append(waiter)
                self._state = RefreshState.REFRESHING
                self._total_refreshes += 1
                self._refresh_start_time = time.time()
                lib_logger.info(
                    f"[RefreshCoordinator] Starting token refresh with "
                    f"{mask_credential(refresh_token)}"
                )
                self._refresh_task = asyncio.create_task(
                    self._run_refresh(refresh_token)
                )

        # A cancelled caller only cancels its own future; the refresh task and
        # the other waiters carry on.
        return await waiter

    async def _run_refresh(self, refresh_token: str) -> None:
        pair: Optional[CredentialPair] = None
        error: Optional[RefreshFailedError] = None

        try:
            refresh_call = self._identity_service.refresh(refresh_token)
            if self._timeout is not None:
                pair = await asyncio.wait_for(refresh_call, timeout=self._timeout)
            else:
                pair = await refresh_call
        except asyncio.TimeoutError:
            error = RefreshTimeoutError(self._timeout)
        except RefreshFailedError as e:
            error = e
        except asyncio.CancelledError:
            await self._settle(None, RefreshNetworkError("Token refresh was cancelled"))
            raise
        except Exception as e:
            # Waiters must be released whatever the identity service raises
            lib_logger.error(f"[RefreshCoordinator] Unexpected refresh error: {e}")
            error = RefreshNetworkError(original_exception=e)

        await self._settle(pair, error)

    async def _settle(
        self, pair: Optional[CredentialPair], error: Optional[RefreshFailedError]
    ) -> None:
        """Store the outcome, then release every waiter and return to IDLE."""
        async with self._lock:
            duration = time.time() - (self._refresh_start_time or time.time())

            if error is None:
                # Store first so no released waiter can read the old token
                self._store.set(pair)
                self._successful_refreshes += 1
                lib_logger.info(
                    f"[RefreshCoordinator] Refresh SUCCESS in {duration:.1f}s; "
                    f"releasing {len(self._waiters)} waiter(s)"
                )
            else:
                self._failed_refreshes += 1
                if isinstance(error, RefreshTimeoutError):
                    self._timeout_refreshes += 1
                if requires_reauthentication(error):
                    self._rejected_refreshes += 1
                    self._store.clear()
                    lib_logger.error(
                        f"[RefreshCoordinator] Refresh REJECTED: {error}. "
                        f"Credentials cleared; {len(self._waiters)} waiter(s) failed"
                    )
                else:
                    lib_logger.warning(
                        f"[RefreshCoordinator] Refresh FAILED after {duration:.1f}s: {error}. "
                        f"Keeping stored credentials; {len(self._waiters)} waiter(s) failed"
                    )

            waiters, self._waiters = self._waiters, []
            self._state = RefreshState.IDLE
            self._refresh_task = None
            self._refresh_start_time = None

            for waiter in waiters:
                if waiter.done():
                    continue
                if error is None:
                    waiter.set_result(pair.access_token)
                else:
                    waiter.set_exception(error)

        if error is not None and requires_reauthentication(error):
            await self._notify_logout(error)

    async def _notify_logout(self, error: RefreshFailedError) -> None:
        for listener in list(self._logout_listeners):
            try:
                result = listener(error)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                lib_logger.error(f"[RefreshCoordinator] Logout listener failed: {e}")

    def is_refreshing(self) -> bool:
        """Check if a refresh is currently in flight."""
        return self._state is RefreshState.REFRESHING

    def get_pending_count(self) -> int:
        """Number of callers waiting on the refresh in flight (leader included)."""
        return len(self._waiters)

    def get_status(self) -> Dict[str, Any]:
        """Get current coordinator status for debugging/monitoring."""
        return {
            "state": self._state.value,
            "refresh_duration": (time.time() - self._refresh_start_time)
            if self._refresh_start_time
            else None,
            "pending_count": len(self._waiters),
            "timeout": self._timeout,
            "stats": {
                "total": self._total_refreshes,
                "successful": self._successful_refreshes,
                "failed": self._failed_refreshes,
                "rejected": self._rejected_refreshes,
                "timeouts": self._timeout_refreshes,
                "shortcuts": self._shortcut_hits,
            },
        }

    async def aclose(self) -> None:
        """Cancel a refresh in flight; its waiters fail with RefreshNetworkError."""
        task = self._refresh_task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
