"""Project-wide logger: stderr always, rotating file under ``settings.log_dir`` when writable."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from jimmygate.config.settings import settings

LOGGER_NAME = "jimmygate"
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
MAX_BYTES = 10 * 1024 * 1024
BACKUP_COUNT = 10


def resolve_level(raw: str | None) -> int:
    level = logging.getLevelName(str(raw or "INFO").strip().upper())
    return level if isinstance(level, int) else logging.INFO


def _file_handler(log_dir: str) -> logging.Handler | None:
    try:
        directory = Path(log_dir)
        directory.mkdir(parents=True, exist_ok=True)
        return RotatingFileHandler(
            directory / f"{LOGGER_NAME}.log",
            maxBytes=MAX_BYTES,
            backupCount=BACKUP_COUNT,
            encoding="utf-8",
        )
    except OSError:
        # 目录不可写（如只读容器）时退回仅 stderr
        return None


def configure_logger(level: str | None = None) -> logging.Logger:
    """Attach handlers once; later calls only adjust the level."""
    configured = logging.getLogger(LOGGER_NAME)
    resolved = resolve_level(level or settings.log_level)
    configured.setLevel(resolved)
    if configured.handlers:
        for handler in configured.handlers:
            handler.setLevel(resolved)
        return configured

    formatter = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if settings.log_to_file:
        file_handler = _file_handler(settings.log_dir)
        if file_handler is not None:
            handlers.append(file_handler)
    for handler in handlers:
        handler.setLevel(resolved)
        handler.setFormatter(formatter)
        configured.addHandler(handler)

    configured.propagate = False
    return configured


logger = configure_logger()


def get_logger(name: str) -> logging.Logger:
    """Return a child logger under the jimmygate namespace."""

    return logger.getChild(name)
