from __future__ import annotations

import logging
import sys
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

from prompter_live.config.models import LoggingSettings

_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def init_logging(settings: LoggingSettings) -> None:
    """Configure the root logger with a console handler and a daily rotating file."""
    root = logging.getLogger()
    root.setLevel(settings.level.upper())
    root.handlers.clear()

    formatter = logging.Formatter(_FORMAT, datefmt=_DATE_FORMAT)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    root.addHandler(console_handler)

    log_path = Path(settings.file.path)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    file_handler = TimedRotatingFileHandler(
        log_path,
        when="midnight",
        backupCount=settings.file.rotation.backup_count,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)

    # aiohttp access logs are noise for a client-side process.
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
