"""Logging setup: stdout, a rotating app.log and BetterStack when a token is configured."""
import logging
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional

from logtail import LogtailHandler

from wa_bridge.settings import Settings

logger = logging.getLogger("wa_bridge")

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5
QUIET_LOGGERS = ("urllib3", "uvicorn.access")


def _betterstack_handler(settings: Settings) -> Optional[logging.Handler]:
    if not settings.betterstack_source_token:
        return None

    kwargs = {"source_token": settings.betterstack_source_token}
    if settings.betterstack_ingest_host:
        kwargs["host"] = settings.betterstack_ingest_host
    try:
        handler = LogtailHandler(**kwargs)
    except Exception as e:
        logging.getLogger().warning(f"Failed to initialize BetterStack logging: {e}")
        return None

    handler.setLevel(logging.DEBUG)
    return handler


def setup_logging(settings: Optional[Settings] = None) -> logging.Logger:
    """Replace the root handlers. Safe to call again with new settings."""
    settings = settings or Settings()
    level = getattr(logging, settings.log_level, logging.INFO)
    formatter = logging.Formatter(LOG_FORMAT)

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)

    settings.logs_dir.mkdir(parents=True, exist_ok=True)
    log_file = RotatingFileHandler(
        settings.logs_dir / "app.log", maxBytes=LOG_FILE_MAX_BYTES, backupCount=LOG_FILE_BACKUPS
    )
    log_file.setLevel(logging.INFO)

    handlers = [console, log_file]
    betterstack = _betterstack_handler(settings)
    if betterstack is not None:
        handlers.append(betterstack)

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers = []
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)

    if betterstack is not None:
        host = settings.betterstack_ingest_host or "default (in.logs.betterstack.com)"
        root.info(f"BetterStack logging enabled (host: {host})")

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return logger
