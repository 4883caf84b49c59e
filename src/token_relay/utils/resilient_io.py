# src/token_relay/utils/resilient_io.py
"""
File helpers for the credential file.

None of these raise on I/O problems: failures are logged and reported through
the return value, so a full disk or a read-only home directory degrades the
store to in-memory operation instead of breaking requests.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional, Union

PathLike = Union[str, Path]


def _replace_atomically(path: Path, content: str, mode: Optional[int]) -> None:
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        if mode is not None:
            # Restrict before the rename so the tokens are never world-readable
            try:
                os.chmod(tmp_name, mode)
            except OSError:
                pass
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise


def safe_write_json(
    path: PathLike,
    data: Dict[str, Any],
    logger: logging.Logger,
    secure_permissions: bool = False,
) -> bool:
    """
    Atomically replace `path` with `data` serialized as JSON.

    Readers see either the old document or the new one, never a partial write.
    With `secure_permissions` the file is created as 0o600.

    Returns:
        True if the file now holds `data`, False otherwise
    """
    path = Path(path)
    try:
        content = json.dumps(data, indent=2)
        path.parent.mkdir(parents=True, exist_ok=True)
        _replace_atomically(path, content, 0o600 if secure_permissions else None)
    except (OSError, TypeError, ValueError) as e:
        logger.warning(f"Could not write {path}: {e}")
        return False
    return True


def safe_read_json(path: PathLike, logger: logging.Logger) -> Optional[Dict[str, Any]]:
    """The JSON object stored at `path`, or None if absent, unreadable or not an object."""
    path = Path(path)
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError as e:
        logger.warning(f"Could not read {path}: {e}")
        return None

    try:
        data = json.loads(raw)
    except ValueError as e:
        logger.warning(f"Ignoring {path}: invalid JSON ({e})")
        return None
    if not isinstance(data, dict):
        logger.warning(f"Ignoring {path}: expected a JSON object")
        return None
    return data


def safe_remove(path: PathLike, logger: logging.Logger) -> bool:
    """Delete `path`. A file that is already gone counts as removed."""
    try:
        Path(path).unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Could not remove {path}: {e}")
        return False
    return True
