# src/relay_app/session.py

import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import httpx

from token_relay.credential_store import CredentialStore, FileCredentialStore
from token_relay.errors import (
    MissingRefreshTokenError,
    RefreshFailedError,
    RequestFailedError,
    handle_api_error,
)
from token_relay.identity_service import IdentityService
from token_relay.refresh_coordinator import RefreshCoordinator
from token_relay.request_executor import HttpxTransport, RequestExecutor
from token_relay.retry_dispatcher import RetryDispatcher
from token_relay.timeout_config import TimeoutConfig

from .config import RelayConfig, resolve_credentials_file

logger = logging.getLogger(__name__)

ForcedLogoutHandler = Callable[[RefreshFailedError], Union[None, Awaitable[None]]]


class AuthSession:
    """
    Application-side session built on the token relay.

    Holds the logged-in user, persists tokens in the credential store, and
    reacts to a forced logout (refresh token rejected) by dropping the user
    and flagging that a new login is required. `on_forced_logout` lets the
    host navigate to its login entry point.
    """

    def __init__(
        self,
        config: RelayConfig,
        store: Optional[CredentialStore] = None,
        client: Optional[httpx.AsyncClient] = None,
        on_forced_logout: Optional[ForcedLogoutHandler] = None,
        refresh_timeout: Optional[float] = None,
    ):
        self.config = config
        self.store = store or FileCredentialStore(resolve_credentials_file(config))

        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            base_url=config.api_url,
            headers={"Content-Type": "application/json"},
            timeout=TimeoutConfig.default(),
        )
        self.identity = IdentityService(
            config.api_url,
            refresh_path=config.refresh_path,
            login_path=config.login_path,
            register_path=config.register_path,
            client=self.client,
        )
        self.coordinator = RefreshCoordinator(
            self.store,
            self.identity,
            timeout=refresh_timeout if refresh_timeout is not None else TimeoutConfig.refresh(),
        )
        self.dispatcher = RetryDispatcher(
            self.store,
            RequestExecutor(HttpxTransport(client=self.client)),
            self.coordinator,
        )
        self.coordinator.add_logout_listener(self._handle_forced_logout)

        self._on_forced_logout = on_forced_logout
        self.user: Optional[Dict[str, Any]] = None
        self.error: Optional[str] = None
        self.requires_login = False

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None

    async def _handle_forced_logout(self, error: RefreshFailedError) -> None:
        logger.warning(f"Session expired, login required: {error}")
        self._require_login(error)
        if self._on_forced_logout is not None:
            result = self._on_forced_logout(error)
            if inspect.isawaitable(result):
                await result

    def _require_login(self, error: Exception) -> None:
        self.user = None
        self.requires_login = True
        self.error = handle_api_error(error)

    def _start_session(self, user: Dict[str, Any]) -> Dict[str, Any]:
        self.user = user
        self.error = None
        self.requires_login = False
        return user

    def _end_session(self) -> None:
        self.store.clear()
        self.user = None

    async def login(self, email: str, password: str) -> Dict[str, Any]:
        try:
            user, pair = await self.identity.login(email, password)
        except Exception as e:
            self.error = handle_api_error(e)
            raise
        self.store.set(pair)
        logger.info(f"Logged in as {user.get('email', email)}")
        return self._start_session(user)

    async def register(self, **fields: Any) -> Dict[str, Any]:
        try:
            user, pair = await self.identity.register(**fields)
        except Exception as e:
            self.error = handle_api_error(e)
            raise
        self.store.set(pair)
        logger.info(f"Registered {user.get('email', fields.get('email', 'new user'))}")
        return self._start_session(user)

    async def logout(self) -> None:
        """Tell the server, then drop the tokens and the user even if that call fails."""
        if self.store.get() is None:
            # Nothing the server could revoke
            self._end_session()
            logger.info("Logged out (no stored session)")
            return
        try:
            await self.request("POST", self.config.logout_path)
        except Exception as e:
            self.error = handle_api_error(e)
            raise
        finally:
            self._end_session()
            logger.info("Logged out")

    async def get_current_user(self) -> Dict[str, Any]:
        try:
            response = await self.request("GET", self.config.me_path)
            try:
                body = response.json()
            except ValueError as e:
                raise RequestFailedError(
                    response.status_code,
                    body=response.text,
                    message=f"Unexpected response from the server (GET {self.config.me_path})",
                    response=response,
                ) from e
        except Exception as e:
            self.error = handle_api_error(e)
            self._end_session()
            raise
        user = body.get("data", body) if isinstance(body, dict) else body
        return self._start_session(user)

    async def request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Authenticated API call with transparent token refresh."""
        try:
            return await self.dispatcher.request(method, path, **kwargs)
        except MissingRefreshTokenError as e:
            # Never logged in (or already logged out): not a forced logout
            self._require_login(e)
            raise

    async def aclose(self) -> None:
        self.coordinator.remove_logout_listener(self._handle_forced_logout)
        await self.coordinator.aclose()
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> "AuthSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
