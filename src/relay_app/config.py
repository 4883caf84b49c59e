# src/relay_app/config.py
"""
Runtime configuration, read from the environment and an optional .env file.

    API_URL                        Base URL of the API (default: http://localhost:5000/api/v1)
    TOKEN_RELAY_REFRESH_PATH       Refresh endpoint (default: /auth/refresh-token)
    TOKEN_RELAY_LOGIN_PATH         Login endpoint (default: /auth/login)
    TOKEN_RELAY_REGISTER_PATH      Registration endpoint (default: /auth/register)
    TOKEN_RELAY_LOGOUT_PATH        Logout endpoint (default: /auth/logout)
    TOKEN_RELAY_ME_PATH            Current-user endpoint (default: /auth/me)
    TOKEN_RELAY_CREDENTIALS_FILE   Where the token pair is kept (default: ./credentials/session.json)

Timeouts (TIMEOUT_*) are read by token_relay.timeout_config.TimeoutConfig.
"""

import os
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Union

from dotenv import dotenv_values, load_dotenv

from token_relay.utils.paths import get_credentials_file, get_default_root

from .config_exceptions import ConfigLoadError, ConfigValidationError

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "http://localhost:5000/api/v1"


@dataclass
class RelayConfig:
    api_url: str = DEFAULT_API_URL
    refresh_path: str = "/auth/refresh-token"
    login_path: str = "/auth/login"
    register_path: str = "/auth/register"
    logout_path: str = "/auth/logout"
    me_path: str = "/auth/me"
    credentials_file: Optional[Path] = None

    def validate(self) -> None:
        if not self.api_url.startswith(("http://", "https://")):
            raise ConfigValidationError(
                f"API_URL must start with http:// or https://, got '{self.api_url}'",
                key="API_URL",
            )
        for name in ("refresh_path", "login_path", "register_path", "logout_path", "me_path"):
            value = getattr(self, name)
            if not value.startswith("/"):
                raise ConfigValidationError(
                    f"{name} must start with '/', got '{value}'", key=name
                )


def load_config(
    env: Optional[Mapping[str, str]] = None,
    env_file: Optional[Union[str, Path]] = None,
) -> RelayConfig:
    """
    Build and validate the configuration.

    With no `env`, the .env file (explicit, or ./.env if present) is loaded into
    os.environ without overriding existing variables, and os.environ is used.
    With an explicit `env`, values from `env_file` only fill in missing keys.

    Raises:
        ConfigLoadError: `env_file` was given but cannot be read
        ConfigValidationError: a value is malformed
    """
    if env_file is not None and not Path(env_file).is_file():
        raise ConfigLoadError(f"Environment file not found: {env_file}", path=env_file)

    if env is None:
        dotenv_path = Path(env_file) if env_file else get_default_root() / ".env"
        if dotenv_path.is_file():
            load_dotenv(dotenv_path, override=False)
            logger.debug(f"Loaded environment from {dotenv_path}")
        source: Mapping[str, str] = os.environ
    else:
        source = dict(env)
        if env_file is not None:
            for key, value in dotenv_values(env_file).items():
                if value is not None:
                    source.setdefault(key, value)

    credentials_file = source.get("TOKEN_RELAY_CREDENTIALS_FILE")
    config = RelayConfig(
        api_url=source.get("API_URL", DEFAULT_API_URL).rstrip("/"),
        refresh_path=source.get("TOKEN_RELAY_REFRESH_PATH", "/auth/refresh-token"),
        login_path=source.get("TOKEN_RELAY_LOGIN_PATH", "/auth/login"),
        register_path=source.get("TOKEN_RELAY_REGISTER_PATH", "/auth/register"),
        logout_path=source.get("TOKEN_RELAY_LOGOUT_PATH", "/auth/logout"),
        me_path=source.get("TOKEN_RELAY_ME_PATH", "/auth/me"),
        credentials_file=Path(credentials_file).expanduser() if credentials_file else None,
    )
    config.validate()
    return config


def resolve_credentials_file(config: RelayConfig) -> Path:
    """The configured credential file, or the default under the data root."""
    return config.credentials_file or get_credentials_file()
