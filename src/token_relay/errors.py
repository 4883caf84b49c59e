import logging
from typing import Any, Optional

import httpx

lib_logger = logging.getLogger("token_relay")

DEFAULT_ERROR_MESSAGE = "An unexpected error occurred"


class TokenRelayError(Exception):
    """Base class for every error raised by the token relay layer."""

    pass


class RequestFailedError(TokenRelayError):
    """
    Raised (or carried inside an OtherFailure) when the API answers with a
    non-success status that is not an authentication failure.

    Attributes:
        status_code: HTTP status returned by the server
        body: Decoded JSON body if available, else the raw text
        response: The underlying httpx.Response
    """

    def __init__(
        self,
        status_code: int,
        body: Any = None,
        message: str = "",
        response: Optional[httpx.Response] = None,
    ):
        self.status_code = status_code
        self.body = body
        self.response = response
        self.message = message or f"Request failed with status {status_code}"
        super().__init__(self.message)


class NetworkError(TokenRelayError):
    """Raised when the transport could not complete the request at all."""

    def __init__(self, message: str = "", original_exception: Optional[Exception] = None):
        self.original_exception = original_exception
        self.message = message or f"Network error: {original_exception}"
        super().__init__(self.message)


class AuthenticationError(TokenRelayError):
    """
    Raised when a request is still rejected as unauthorized after it was
    replayed with a freshly refreshed token.
    """

    def __init__(self, message: str = "", response: Optional[httpx.Response] = None):
        self.response = response
        self.message = message or "Request rejected as unauthorized after token refresh"
        super().__init__(self.message)


class RefreshFailedError(TokenRelayError):
    """Base class for failures of the refresh-token exchange."""

    def __init__(self, message: str = "", status_code: Optional[int] = None):
        self.status_code = status_code
        self.message = message or "Token refresh failed"
        super().__init__(self.message)


class RefreshRejectedError(RefreshFailedError):
    """
    The identity service refused the refresh token (invalid, expired or
    already used). The session cannot be recovered without logging in again.
    """

    pass


class MissingRefreshTokenError(RefreshRejectedError):
    """There is no refresh token in the credential store to exchange."""

    def __init__(self, message: str = ""):
        super().__init__(message or "No refresh token available; login required")


class RefreshNetworkError(RefreshFailedError):
    """
    The refresh call did not reach a verdict (transport error, 5xx, 429).

    The refresh token is presumed still valid, so the stored credentials are
    kept and a later authentication failure simply tries again.
    """

    def __init__(
        self,
        message: str = "",
        status_code: Optional[int] = None,
        original_exception: Optional[Exception] = None,
    ):
        self.original_exception = original_exception
        super().__init__(message or f"Token refresh failed: {original_exception}", status_code)


class RefreshTimeoutError(RefreshNetworkError):
    """The refresh call did not complete within the configured timeout."""

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"Token refresh timed out after {timeout}s")


def requires_reauthentication(error: BaseException) -> bool:
    """True when a refresh failure means the user has to log in again."""
    return isinstance(error, RefreshRejectedError)


def mask_credential(credential: Optional[str]) -> str:
    """
    Mask a token for safe display in logs and error messages.

    Shows only the last 6 characters (e.g. "...xyz123").
    """
    if not credential:
        return "<none>"
    if len(credential) > 6:
        return f"...{credential[-6:]}"
    return "***"


def response_body(response: Optional[httpx.Response]) -> Any:
    """Decoded JSON body of a response, falling back to its text."""
    if response is None:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


def handle_api_error(error: BaseException) -> str:
    """
    Turn any error from the access layer into a message fit for the user.

    Preference order:
    1. A list of validation errors in the body: their messages joined by ", "
    2. A top-level "message" in the body
    3. The exception's own message
    """
    body = getattr(error, "body", None)
    if body is None:
        body = response_body(getattr(error, "response", None))

    if isinstance(body, dict):
        errors = body.get("errors")
        if isinstance(errors, list) and errors:
            messages = [
                str(item.get("message"))
                for item in errors
                if isinstance(item, dict) and item.get("message")
            ]
            if messages:
                return ", ".join(messages)
        if body.get("message"):
            return str(body["message"])

    message = getattr(error, "message", None) or str(error)
    if message:
        return message
    return DEFAULT_ERROR_MESSAGE
