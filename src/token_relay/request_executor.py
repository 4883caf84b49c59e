# src/token_relay/request_executor.py

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

import httpx

from .errors import NetworkError, RequestFailedError, response_body
from .timeout_config import TimeoutConfig

lib_logger = logging.getLogger("token_relay")

UNAUTHORIZED_STATUS = 401


@dataclass
class RequestAttempt:
    """
    One logical API call.

    `retried` starts False and is flipped to True right before the single
    replay that follows a token refresh.
    """

    method: str
    target: str
    body: Any = None
    params: Optional[Dict[str, Any]] = None
    headers: Dict[str, str] = field(default_factory=dict)
    retried: bool = False

    def describe(self) -> str:
        return f"{self.method.upper()} {self.target}"


@dataclass
class Success:
    response: httpx.Response


@dataclass
class AuthFailure:
    """The server rejected the access token (HTTP 401)."""

    response: httpx.Response


@dataclass
class OtherFailure:
    """Any failure that is not about the access token. Never triggers a refresh."""

    error: Union[RequestFailedError, NetworkError]


ExecutionOutcome = Union[Success, AuthFailure, OtherFailure]


class HttpxTransport:
    """
    Sends attempts through a shared httpx.AsyncClient.

    Relative targets are resolved against `base_url`. Transport problems surface
    as httpx.RequestError (including httpx.TimeoutException).
    """

    def __init__(
        self,
        base_url: str = "",
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[httpx.Timeout] = None,
    ):
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            base_url=base_url,
            headers={"Content-Type": "application/json"},
            timeout=timeout or TimeoutConfig.default(),
        )

    async def send(self, attempt: RequestAttempt, headers: Dict[str, str]) -> httpx.Response:
        return await self.client.request(
            attempt.method,
            attempt.target,
            json=attempt.body,
            params=attempt.params,
            headers=headers,
        )

    async def aclose(self):
        if self._owns_client:
            await self.client.aclose()


class RequestExecutor:
    """Performs a single outbound call and classifies how it went."""

    def __init__(self, transport: HttpxTransport):
        self.transport = transport

    async def execute(
        self, attempt: RequestAttempt, access_token: Optional[str]
    ) -> ExecutionOutcome:
        headers = dict(attempt.headers)
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"

        try:
            response = await self.transport.send(attempt, headers)
        except httpx.RequestError as e:
            lib_logger.warning(f"Network error for {attempt.describe()}: {e}")
            return OtherFailure(NetworkError(original_exception=e))

        if response.status_code == UNAUTHORIZED_STATUS:
            lib_logger.debug(f"{attempt.describe()} rejected as unauthorized")
            return AuthFailure(response)

        if response.status_code >= 400:
            return OtherFailure(
                RequestFailedError(
                    response.status_code,
                    body=response_body(response),
                    message=f"{attempt.describe()} failed with status {response.status_code}",
                    response=response,
                )
            )

        return Success(response)
