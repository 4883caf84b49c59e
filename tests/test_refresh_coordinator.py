"""
Tests for the single-flight refresh coordinator.

Refresh tokens are single use, so these focus on the guarantees that keep a
burst of 401s from exchanging the same token twice: one leader, every waiter
released exactly once, and a clean reset after failures.
"""

import asyncio

import pytest

from token_relay.credential_store import CredentialPair, MemoryCredentialStore
from token_relay.errors import (
    MissingRefreshTokenError,
    RefreshNetworkError,
    RefreshRejectedError,
    RefreshTimeoutError,
)
from token_relay.refresh_coordinator import RefreshCoordinator, RefreshState
from tests.fixtures.fake_services import FakeIdentityService


async def wait_for_waiters(coordinator, count):
    """Yield to the loop until `count` callers are queued on the refresh."""
    for _ in range(100):
        if coordinator.get_pending_count() >= count:
            return
        await asyncio.sleep(0)
    raise AssertionError(
        f"Expected {count} waiters, found {coordinator.get_pending_count()}"
    )


class TestSingleFlight:
    """Concurrent callers collapse into one refresh call."""

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_refresh(self, coordinator, identity, store):
        identity.gate = asyncio.Event()
        tasks = [asyncio.create_task(coordinator.acquire("access-0")) for _ in range(10)]

        await wait_for_waiters(coordinator, 10)
        assert coordinator.state is RefreshState.REFRESHING

        identity.gate.set()
        results = await asyncio.gather(*tasks)

        assert identity.calls == ["refresh-0"]
        assert results == ["access-1"] * 10
        assert store.get() == CredentialPair("access-1", "refresh-1")
        assert coordinator.state is RefreshState.IDLE
        assert coordinator.get_pending_count() == 0

    @pytest.mark.asyncio
    async def test_store_holds_new_token_before_any_waiter_resumes(
        self, coordinator, identity, store
    ):
        identity.gate = asyncio.Event()

        async def acquire_and_read():
            token = await coordinator.acquire("access-0")
            return token, store.get_access_token()

        tasks = [asyncio.create_task(acquire_and_read()) for _ in range(5)]
        await wait_for_waiters(coordinator, 5)
        identity.gate.set()

        for token, stored in await asyncio.gather(*tasks):
            assert token == stored == "access-1"

    @pytest.mark.asyncio
    async def test_token_already_replaced_skips_refresh(self, coordinator, identity, store):
        store.set(CredentialPair("access-1", "refresh-1"))

        token = await coordinator.acquire("access-0")

        assert token == "access-1"
        assert identity.calls == []
        assert coordinator.get_status()["stats"]["shortcuts"] == 1

    @pytest.mark.asyncio
    async def test_consecutive_refreshes_use_latest_refresh_token(self, coordinator, identity):
        first = await coordinator.acquire("access-0")
        second = await coordinator.acquire(first)

        assert (first, second) == ("access-1", "access-2")
        assert identity.calls == ["refresh-0", "refresh-1"]

    @pytest.mark.asyncio
    async def test_status_while_refreshing(self, coordinator, identity):
        identity.gate = asyncio.Event()
        tasks = [asyncio.create_task(coordinator.acquire("access-0")) for _ in range(2)]
        await wait_for_waiters(coordinator, 2)

        status = coordinator.get_status()
        assert coordinator.is_refreshing()
        assert status["state"] == "refreshing"
        assert status["pending_count"] == 2

        identity.gate.set()
        await asyncio.gather(*tasks)

        status = coordinator.get_status()
        assert status["state"] == "idle"
        assert status["stats"]["total"] == 1
        assert status["stats"]["successful"] == 1


class TestRefreshFailures:
    """Failed refreshes release every waiter and decide whether to force a logout."""

    @pytest.mark.asyncio
    async def test_rejected_refresh_fails_everyone_and_clears_store(
        self, store, logout_events, coordinator, identity
    ):
        identity.results = [RefreshRejectedError("Refresh token already used", 401)]
        identity.gate = asyncio.Event()
        tasks = [asyncio.create_task(coordinator.acquire("access-0")) for _ in range(5)]
        await wait_for_waiters(coordinator, 5)

        identity.gate.set()
        results = await asyncio.gather(*tasks, return_exceptions=True)

        assert all(isinstance(r, RefreshRejectedError) for r in results)
        assert store.get() is None
        assert len(logout_events) == 1
        assert coordinator.state is RefreshState.IDLE
        assert identity.calls == ["refresh-0"]

    @pytest.mark.asyncio
    async def test_network_failure_keeps_credentials(
        self, store, expired_pair, logout_events, coordinator, identity
    ):
        identity.results = [RefreshNetworkError("connection reset")]

        with pytest.raises(RefreshNetworkError):
            await coordinator.acquire("access-0")

        assert store.get() == expired_pair
        assert logout_events == []
        assert coordinator.state is RefreshState.IDLE

        # The refresh token was never consumed, so the next attempt can use it
        assert await coordinator.acquire("access-0") == "access-2"
        assert identity.calls == ["refresh-0", "refresh-0"]

    @pytest.mark.asyncio
    async def test_missing_refresh_token_fails_caller_only(self, identity):
        store = MemoryCredentialStore(CredentialPair("access-0", ""))
        coordinator = RefreshCoordinator(store, identity, timeout=None)
        events = []
        coordinator.add_logout_listener(events.append)

        with pytest.raises(MissingRefreshTokenError):
            await coordinator.acquire("access-0")

        assert identity.calls == []
        assert events == []
        assert store.get() is None
        assert coordinator.state is RefreshState.IDLE

    @pytest.mark.asyncio
    async def test_late_auth_failure_after_rejection_does_not_signal_again(
        self, store, logout_events, coordinator, identity
    ):
        identity.results = [RefreshRejectedError("Refresh token already used", 401)]

        with pytest.raises(RefreshRejectedError):
            await coordinator.acquire("access-0")
        # A request that left with the old token comes back 401 after the rejection
        with pytest.raises(MissingRefreshTokenError):
            await coordinator.acquire("access-0")

        assert len(logout_events) == 1
        assert identity.calls == ["refresh-0"]
        assert store.get() is None

    @pytest.mark.asyncio
    async def test_hung_refresh_times_out(self, store, expired_pair, identity):
        coordinator = RefreshCoordinator(store, identity, timeout=0.05)
        events = []
        coordinator.add_logout_listener(events.append)
        identity.gate = asyncio.Event()

        tasks = [asyncio.create_task(coordinator.acquire("access-0")) for _ in range(3)]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        assert all(isinstance(r, RefreshTimeoutError) for r in results)
        assert store.get() == expired_pair
        assert events == []
        assert coordinator.get_status()["stats"]["timeouts"] == 1
        assert coordinator.state is RefreshState.IDLE

    @pytest.mark.asyncio
    @pytest.mark.parametrize("timeout", [0, -5.0])
    async def test_non_positive_timeout_means_no_limit(self, store, identity, timeout):
        coordinator = RefreshCoordinator(store, identity, timeout=timeout)

        assert coordinator.get_status()["timeout"] is None
        assert await coordinator.acquire("access-0") == "access-1"

    @pytest.mark.asyncio
    async def test_unexpected_error_still_releases_waiters(self, coordinator, identity):
        identity.results = [RuntimeError("identity client bug")]

        with pytest.raises(RefreshNetworkError):
            await coordinator.acquire("access-0")

        assert coordinator.state is RefreshState.IDLE

    @pytest.mark.asyncio
    async def test_logout_listeners_sync_async_and_failing(self, coordinator, identity):
        identity.results = [RefreshRejectedError("expired")]
        seen = []

        def broken_listener(error):
            raise RuntimeError("listener bug")

        async def async_listener(error):
            await asyncio.sleep(0)
            seen.append(error)

        coordinator.add_logout_listener(broken_listener)
        coordinator.add_logout_listener(async_listener)

        with pytest.raises(RefreshRejectedError):
            await coordinator.acquire("access-0")

        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_removed_listener_is_not_called(self, coordinator, identity):
        identity.results = [RefreshRejectedError("expired")]
        events = []
        coordinator.add_logout_listener(events.append)
        coordinator.remove_logout_listener(events.append)

        with pytest.raises(RefreshRejectedError):
            await coordinator.acquire("access-0")

        assert events == []


class TestCancellation:
    """Abandoned callers never disturb the refresh or the other waiters."""

    @pytest.mark.asyncio
    async def test_cancelled_callers_do_not_cancel_refresh(self, coordinator, identity, store):
        identity.gate = asyncio.Event()
        tasks = [asyncio.create_task(coordinator.acquire("access-0")) for _ in range(3)]
        await wait_for_waiters(coordinator, 3)

        # The first task is the leader; cancelling it must not stop the refresh
        tasks[0].cancel()
        tasks[1].cancel()
        await asyncio.sleep(0)

        identity.gate.set()
        assert await tasks[2] == "access-1"

        for task in tasks[:2]:
            with pytest.raises(asyncio.CancelledError):
                await task

        assert identity.calls == ["refresh-0"]
        assert store.get_access_token() == "access-1"

    @pytest.mark.asyncio
    async def test_aclose_fails_waiters_and_keeps_store(
        self, coordinator, identity, store, expired_pair
    ):
        identity.gate = asyncio.Event()
        tasks = [asyncio.create_task(coordinator.acquire("access-0")) for _ in range(2)]
        await wait_for_waiters(coordinator, 2)

        await coordinator.aclose()
        results = await asyncio.gather(*tasks, return_exceptions=True)

        assert all(isinstance(r, RefreshNetworkError) for r in results)
        assert store.get() == expired_pair
        assert coordinator.state is RefreshState.IDLE
