# src/token_relay/identity_service.py

import logging
from typing import Any, Dict, Optional, Tuple

import httpx

from .credential_store import CredentialPair
from .errors import (
    NetworkError,
    RefreshNetworkError,
    RefreshRejectedError,
    RequestFailedError,
    mask_credential,
    response_body,
)
from .timeout_config import TimeoutConfig

lib_logger = logging.getLogger("token_relay")

DEFAULT_REFRESH_PATH = "/auth/refresh-token"
DEFAULT_LOGIN_PATH = "/auth/login"
DEFAULT_REGISTER_PATH = "/auth/register"

# Statuses that mean "this refresh token will never work again"
REJECTION_STATUSES = frozenset({400, 401, 403})


def parse_token_payload(payload: Any) -> CredentialPair:
    """
    Extract the token pair from an auth response.

    Expected shape: {"data": {"tokens": {"accessToken": ..., "refreshToken": ...}}}.
    A bare {"tokens": {...}} is accepted as well.

    Raises:
        ValueError: if either token is missing
    """
    data = payload.get("data", payload) if isinstance(payload, dict) else None
    tokens = data.get("tokens") if isinstance(data, dict) else None
    if not isinstance(tokens, dict):
        raise ValueError("Response has no 'tokens' object")

    access_token = tokens.get("accessToken")
    refresh_token = tokens.get("refreshToken")
    if not access_token or not refresh_token:
        missing = [
            name
            for name, value in (("accessToken", access_token), ("refreshToken", refresh_token))
            if not value
        ]
        raise ValueError(f"Response tokens missing fields: {missing}")
    return CredentialPair(access_token=access_token, refresh_token=refresh_token)


class IdentityService:
    """
    Client for the authentication endpoints.

    Uses its own plain httpx client: these calls never carry the bearer token
    and never go through the retry dispatcher, so a failing refresh cannot
    recurse into another refresh. Nothing here retries; callers decide.
    """

    def __init__(
        self,
        base_url: str,
        refresh_path: str = DEFAULT_REFRESH_PATH,
        login_path: str = DEFAULT_LOGIN_PATH,
        register_path: str = DEFAULT_REGISTER_PATH,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.refresh_path = refresh_path
        self.login_path = login_path
        self.register_path = register_path
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            base_url=base_url,
            headers={"Content-Type": "application/json"},
            timeout=TimeoutConfig.default(),
        )

    async def refresh(self, refresh_token: str) -> CredentialPair:
        """
        Exchange a refresh token for a new credential pair.

        Raises:
            RefreshRejectedError: the token was refused (invalid, reused, expired)
                or the response carried no usable tokens
            RefreshNetworkError: transport failure, rate limiting or server error
        """
        lib_logger.debug(f"Exchanging refresh token {mask_credential(refresh_token)}")
        try:
            response = await self.client.post(
                self.refresh_path, json={"refreshToken": refresh_token}
            )
        except httpx.RequestError as e:
            raise RefreshNetworkError(original_exception=e) from e

        status_code = response.status_code
        if status_code >= 400:
            body = response_body(response)
            lib_logger.error(f"[REFRESH HTTP ERROR] HTTP {status_code}: {body}")
            if status_code == 429 or status_code >= 500:
                raise RefreshNetworkError(
                    message=f"Identity service unavailable (HTTP {status_code})",
                    status_code=status_code,
                )
            if status_code in REJECTION_STATUSES:
                raise RefreshRejectedError(
                    message=f"Refresh token rejected (HTTP {status_code})",
                    status_code=status_code,
                )
            raise RefreshRejectedError(
                message=f"Unexpected refresh response (HTTP {status_code})",
                status_code=status_code,
            )

        try:
            return parse_token_payload(response.json())
        except ValueError as e:
            lib_logger.error(f"Malformed refresh response: {e}")
            raise RefreshRejectedError(
                message=f"Malformed refresh response: {e}", status_code=status_code
            ) from e

    async def _authenticate(
        self, path: str, payload: Dict[str, Any]
    ) -> Tuple[Dict[str, Any], CredentialPair]:
        try:
            response = await self.client.post(path, json=payload)
        except httpx.RequestError as e:
            raise NetworkError(original_exception=e) from e

        if response.status_code >= 400:
            raise RequestFailedError(
                response.status_code,
                body=response_body(response),
                message=f"POST {path} failed with status {response.status_code}",
                response=response,
            )

        try:
            body = response.json()
            pair = parse_token_payload(body)
        except ValueError as e:
            lib_logger.error(f"Malformed response from POST {path}: {e}")
            raise RequestFailedError(
                response.status_code,
                body=response_body(response),
                message=f"Unexpected response from the server (POST {path})",
                response=response,
            ) from e
        data = body.get("data", body)
        return data.get("user") or {}, pair

    async def login(
        self, email: str, password: str
    ) -> Tuple[Dict[str, Any], CredentialPair]:
        """Log in and return the user record with a fresh credential pair."""
        return await self._authenticate(
            self.login_path, {"email": email, "password": password}
        )

    async def register(self, **fields: Any) -> Tuple[Dict[str, Any], CredentialPair]:
        """Create an account and return the user record with its credential pair."""
        return await self._authenticate(self.register_path, fields)

    async def aclose(self):
        if self._owns_client:
            await self.client.aclose()
