"""Errors raised while building the relay configuration."""


class RelayConfigError(Exception):
    """Base class for configuration problems; the CLI exits with status 2."""

    pass


class ConfigLoadError(RelayConfigError):
    """An environment file was requested but could not be read."""

    def __init__(self, message: str, path=None):
        self.path = path
        super().__init__(message)


class ConfigValidationError(RelayConfigError):
    """A setting is present but malformed. `key` names the offending setting."""

    def __init__(self, message: str, key: str = ""):
        self.key = key
        super().__init__(message)
