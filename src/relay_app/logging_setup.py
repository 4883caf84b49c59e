# src/relay_app/logging_setup.py

import logging
import sys
from pathlib import Path
from typing import Optional, Union

import colorlog

from token_relay.utils.paths import get_logs_dir

FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
RELAY_HANDLER_ATTR = "_relay_handler"


# Ensure the debug handler ONLY gets DEBUG messages from token_relay
class RelayDebugFilter(logging.Filter):
    def filter(self, record):
        return record.levelno == logging.DEBUG and record.name.startswith("token_relay")


def setup_logging(
    log_dir: Optional[Union[Path, str]] = None, console_level: int = logging.INFO
) -> Path:
    """
    Configure root logging: colored console, relay.log (INFO+) and
    relay_debug.log (token_relay DEBUG only).

    Returns:
        The directory the log files are written to
    """
    logs_dir = Path(log_dir) if log_dir else get_logs_dir()
    logs_dir.mkdir(parents=True, exist_ok=True)

    console_handler = colorlog.StreamHandler(sys.stdout)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(
        colorlog.ColoredFormatter(
            "%(log_color)s%(message)s",
            log_colors={
                "DEBUG": "cyan",
                "INFO": "green",
                "WARNING": "yellow",
                "ERROR": "red",
                "CRITICAL": "red,bg_white",
            },
        )
    )

    info_file_handler = logging.FileHandler(logs_dir / "relay.log", encoding="utf-8")
    info_file_handler.setLevel(logging.INFO)
    info_file_handler.setFormatter(logging.Formatter(FILE_FORMAT))

    debug_file_handler = logging.FileHandler(logs_dir / "relay_debug.log", encoding="utf-8")
    debug_file_handler.setLevel(logging.DEBUG)
    debug_file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
    debug_file_handler.addFilter(RelayDebugFilter())

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    # Replace handlers from a previous call so repeated setup doesn't duplicate output
    for handler in list(root_logger.handlers):
        if getattr(handler, RELAY_HANDLER_ATTR, False):
            root_logger.removeHandler(handler)
            handler.close()
    for handler in (console_handler, info_file_handler, debug_file_handler):
        setattr(handler, RELAY_HANDLER_ATTR, True)
        root_logger.addHandler(handler)

    # Silence noisy HTTP client loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    return logs_dir
