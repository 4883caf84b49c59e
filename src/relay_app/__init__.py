from .config import RelayConfig, load_config
from .session import AuthSession

__all__ = ["RelayConfig", "load_config", "AuthSession"]
