from .credential_store import (
    CredentialPair,
    CredentialStore,
    FileCredentialStore,
    MemoryCredentialStore,
)
from .errors import (
    AuthenticationError,
    MissingRefreshTokenError,
    NetworkError,
    RefreshFailedError,
    RefreshNetworkError,
    RefreshRejectedError,
    RefreshTimeoutError,
    RequestFailedError,
    TokenRelayError,
    handle_api_error,
)
from .identity_service import IdentityService
from .refresh_coordinator import RefreshCoordinator, RefreshState
from .request_executor import (
    AuthFailure,
    HttpxTransport,
    OtherFailure,
    RequestAttempt,
    RequestExecutor,
    Success,
)
from .retry_dispatcher import RetryDispatcher, TerminalFailure
from .timeout_config import TimeoutConfig

__all__ = [
    "CredentialPair",
    "CredentialStore",
    "FileCredentialStore",
    "MemoryCredentialStore",
    "AuthenticationError",
    "MissingRefreshTokenError",
    "NetworkError",
    "RefreshFailedError",
    "RefreshNetworkError",
    "RefreshRejectedError",
    "RefreshTimeoutError",
    "RequestFailedError",
    "TokenRelayError",
    "handle_api_error",
    "IdentityService",
    "RefreshCoordinator",
    "RefreshState",
    "AuthFailure",
    "HttpxTransport",
    "OtherFailure",
    "RequestAttempt",
    "RequestExecutor",
    "Success",
    "RetryDispatcher",
    "TerminalFailure",
    "TimeoutConfig",
]
