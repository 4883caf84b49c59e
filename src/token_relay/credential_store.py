# src/token_relay/credential_store.py

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Union

from .errors import mask_credential
from .utils.resilient_io import safe_read_json, safe_remove, safe_write_json

lib_logger = logging.getLogger("token_relay")

# Keys used in the credential file
ACCESS_TOKEN_KEY = "mpms_access_token"
REFRESH_TOKEN_KEY = "mpms_refresh_token"


@dataclass(frozen=True)
class CredentialPair:
    """An access token plus the single-use refresh token that renews it."""

    access_token: str
    refresh_token: str

    def __repr__(self) -> str:
        return (
            f"CredentialPair(access_token='{mask_credential(self.access_token)}', "
            f"refresh_token='{mask_credential(self.refresh_token)}')"
        )

    @classmethod
    def from_env(
        cls, env: Mapping[str, str], prefix: str = "TOKEN_RELAY"
    ) -> Optional["CredentialPair"]:
        """
        Build a pair from <PREFIX>_ACCESS_TOKEN and <PREFIX>_REFRESH_TOKEN.

        Both variables must be present and non-empty, otherwise None.
        """
        access_token = env.get(f"{prefix}_ACCESS_TOKEN")
        refresh_token = env.get(f"{prefix}_REFRESH_TOKEN")
        if not (access_token and refresh_token):
            return None
        return cls(access_token=access_token, refresh_token=refresh_token)


class CredentialStore:
    """
    Process-local holder of the current credential pair.

    get/set/clear are synchronous and never fail; an empty store is
    represented by get() returning None.
    """

    def get(self) -> Optional[CredentialPair]:
        raise NotImplementedError

    def set(self, pair: CredentialPair) -> None:
        raise NotImplementedError

    def clear(self) -> None:
        raise NotImplementedError

    def get_access_token(self) -> Optional[str]:
        pair = self.get()
        return pair.access_token if pair else None

    def get_refresh_token(self) -> Optional[str]:
        pair = self.get()
        return pair.refresh_token if pair else None


class MemoryCredentialStore(CredentialStore):
    """In-memory store. Nothing survives the process."""

    def __init__(self, pair: Optional[CredentialPair] = None):
        self._pair = pair
        self._lock = threading.Lock()

    def get(self) -> Optional[CredentialPair]:
        with self._lock:
            return self._pair

    def set(self, pair: CredentialPair) -> None:
        with self._lock:
            self._pair = pair

    def clear(self) -> None:
        with self._lock:
            self._pair = None


class FileCredentialStore(CredentialStore):
    """
    Durable store backed by a JSON file with owner-only permissions.

    The file is read once, lazily, and afterwards served from memory. Writes go
    to disk first; if the disk write fails the in-memory pair is still updated
    so the running process keeps working with the newest tokens (the refresh
    token on disk has already been consumed by the server either way).
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._pair: Optional[CredentialPair] = None
        self._loaded = False
        self._lock = threading.Lock()

    def _load(self) -> None:
        data = safe_read_json(self.path, lib_logger)
        self._loaded = True
        if not data:
            self._pair = None
            return

        access_token = data.get(ACCESS_TOKEN_KEY)
        refresh_token = data.get(REFRESH_TOKEN_KEY)
        if access_token and refresh_token:
            self._pair = CredentialPair(access_token, refresh_token)
            lib_logger.debug(f"Loaded stored credentials from '{self.path.name}'")
        else:
            lib_logger.warning(
                f"Credential file '{self.path.name}' is incomplete; treating store as empty"
            )
            self._pair = None

    def get(self) -> Optional[CredentialPair]:
        with self._lock:
            if not self._loaded:
                self._load()
            return self._pair

    def set(self, pair: CredentialPair) -> None:
        with self._lock:
            data = {
                ACCESS_TOKEN_KEY: pair.access_token,
                REFRESH_TOKEN_KEY: pair.refresh_token,
            }
            if not safe_write_json(self.path, data, lib_logger, secure_permissions=True):
                lib_logger.error(
                    f"Failed to persist credentials to '{self.path.name}'. "
                    f"Keeping them in memory for this process only."
                )
            self._pair = pair
            self._loaded = True

    def clear(self) -> None:
        with self._lock:
            self._pair = None
            self._loaded = True
            safe_remove(self.path, lib_logger)
