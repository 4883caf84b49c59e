# src/token_relay/retry_dispatcher.py

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

import httpx

from .credential_store import CredentialStore
from .errors import AuthenticationError, RefreshFailedError, TokenRelayError
from .refresh_coordinator import RefreshCoordinator
from .request_executor import (
    AuthFailure,
    OtherFailure,
    RequestAttempt,
    RequestExecutor,
    Success,
)

lib_logger = logging.getLogger("token_relay")


@dataclass
class TerminalFailure:
    """A final outcome this layer will not retry."""

    error: TokenRelayError


DispatchOutcome = Union[Success, TerminalFailure]


class RetryDispatcher:
    """
    Entry point for API calls.

    Sends the attempt with the stored access token. On a 401 it asks the
    refresh coordinator for a new token and replays the attempt exactly once.
    Anything else (success, non-auth failure, second 401, failed refresh) is
    returned as is.
    """

    def __init__(
        self,
        store: CredentialStore,
        executor: RequestExecutor,
        coordinator: RefreshCoordinator,
    ):
        self.store = store
        self.executor = executor
        self.coordinator = coordinator

    async def dispatch(self, attempt: RequestAttempt) -> DispatchOutcome:
        access_token = self.store.get_access_token()
        outcome = await self.executor.execute(attempt, access_token)

        if isinstance(outcome, Success):
            return outcome
        if isinstance(outcome, OtherFailure):
            return TerminalFailure(outcome.error)

        if attempt.retried:
            lib_logger.warning(
                f"{attempt.describe()} unauthorized again after refresh; giving up"
            )
            return TerminalFailure(AuthenticationError(response=outcome.response))

        attempt.retried = True
        try:
            new_token = await self.coordinator.acquire(access_token)
        except RefreshFailedError as e:
            lib_logger.info(f"{attempt.describe()} failed: token refresh failed ({e})")
            return TerminalFailure(e)

        lib_logger.debug(f"Replaying {attempt.describe()} with refreshed token")
        replay = await self.executor.execute(attempt, new_token)
        if isinstance(replay, Success):
            return replay
        if isinstance(replay, AuthFailure):
            return TerminalFailure(AuthenticationError(response=replay.response))
        return TerminalFailure(replay.error)

    async def request(
        self,
        method: str,
        target: str,
        json: Any = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        """
        Dispatch a request and return its response.

        Raises:
            TokenRelayError: the terminal error if the request did not succeed
        """
        attempt = RequestAttempt(
            method=method,
            target=target,
            body=json,
            params=params,
            headers=dict(headers or {}),
        )
        outcome = await self.dispatch(attempt)
        if isinstance(outcome, TerminalFailure):
            raise outcome.error
        return outcome.response
