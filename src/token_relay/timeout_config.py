# src/token_relay/timeout_config.py
"""
Timeouts for API calls and for the refresh-token exchange.

Environment overrides (seconds):
    TIMEOUT_CONNECT  establishing a connection (10)
    TIMEOUT_READ     waiting for response data (30)
    TIMEOUT_WRITE    sending the request body (10)
    TIMEOUT_POOL     waiting for a pooled connection (10)
    TIMEOUT_REFRESH  one whole refresh exchange (30); 0 or less disables it
"""

import os
import logging
from typing import Optional

import httpx

lib_logger = logging.getLogger("token_relay")


class TimeoutConfig:
    DEFAULTS = {
        "TIMEOUT_CONNECT": 10.0,
        "TIMEOUT_READ": 30.0,
        "TIMEOUT_WRITE": 10.0,
        "TIMEOUT_POOL": 10.0,
        "TIMEOUT_REFRESH": 30.0,
    }

    @classmethod
    def _seconds(cls, key: str) -> float:
        default = cls.DEFAULTS[key]
        raw = os.environ.get(key)
        if raw is None:
            return default
        try:
            return float(raw)
        except ValueError:
            lib_logger.warning(f"{key}={raw!r} is not a number; using {default}s")
            return default

    @classmethod
    def connect(cls) -> float:
        return cls._seconds("TIMEOUT_CONNECT")

    @classmethod
    def read(cls) -> float:
        return cls._seconds("TIMEOUT_READ")

    @classmethod
    def write(cls) -> float:
        return cls._seconds("TIMEOUT_WRITE")

    @classmethod
    def pool(cls) -> float:
        return cls._seconds("TIMEOUT_POOL")

    @classmethod
    def refresh(cls) -> Optional[float]:
        """
        Upper bound for a refresh exchange, or None when disabled.

        While a refresh is pending every request that hit a 401 is parked
        behind it, so this bounds how long they can be held.
        """
        value = cls._seconds("TIMEOUT_REFRESH")
        return value if value > 0 else None

    @classmethod
    def default(cls) -> httpx.Timeout:
        """httpx timeout for ordinary API requests."""
        return httpx.Timeout(
            connect=cls.connect(), read=cls.read(), write=cls.write(), pool=cls.pool()
        )
