# src/token_relay/utils/paths.py
"""
Where the relay keeps its files.

A frozen (PyInstaller) build keeps logs/ and credentials/ next to the
executable; otherwise they live under the current working directory.
Every helper accepts an explicit `root` for tests and embedding hosts.
"""

import sys
from pathlib import Path
from typing import Optional, Union

DEFAULT_CREDENTIALS_FILENAME = "session.json"


def get_default_root() -> Path:
    if getattr(sys, "frozen", False):
        return Path(sys.executable).parent
    return Path.cwd()


def _subdir(name: str, root: Optional[Union[Path, str]]) -> Path:
    directory = (Path(root) if root else get_default_root()) / name
    directory.mkdir(parents=True, exist_ok=True)
    return directory


def get_logs_dir(root: Optional[Union[Path, str]] = None) -> Path:
    """`<root>/logs`, created on first use."""
    return _subdir("logs", root)


def get_credentials_dir(root: Optional[Union[Path, str]] = None) -> Path:
    """`<root>/credentials`, created on first use."""
    return _subdir("credentials", root)


def get_credentials_file(
    filename: str = DEFAULT_CREDENTIALS_FILENAME, root: Optional[Union[Path, str]] = None
) -> Path:
    """Path of the token file. Only its directory is created."""
    return get_credentials_dir(root) / filename
