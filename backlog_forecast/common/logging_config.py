from __future__ import annotations

import logging
from pathlib import Path
from typing import Final


DEFAULT_LOG_FORMAT: Final[str] = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
LOG_FILENAME: Final[str] = "forecast.log"


def resolve_level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.strip().upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {level!r}")
    return resolved


def configure_logging(level: int | str = logging.INFO, log_dir: str | Path | None = None) -> Path | None:
    """Route engine logs to stderr and, optionally, to ``<log_dir>/forecast.log``.

    The console honours ``level``; the file always records DEBUG so that a
    saturated or cancelled run can be inspected afterwards. numpy and scipy
    warnings are captured into the same handlers. Returns the log file path
    when one is written.
    """
    console_level = resolve_level(level)
    console = logging.StreamHandler()
    console.setLevel(console_level)
    handlers: list[logging.Handler] = [console]

    log_path: Path | None = None
    if log_dir is not None:
        directory = Path(log_dir).expanduser()
        directory.mkdir(parents=True, exist_ok=True)
        log_path = directory / LOG_FILENAME
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        handlers.append(file_handler)

    root_level = logging.DEBUG if log_path is not None else console_level
    logging.basicConfig(level=root_level, format=DEFAULT_LOG_FORMAT, handlers=handlers, force=True)
    logging.captureWarnings(True)
    return log_path
