import logging
import os
from datetime import datetime
from pathlib import Path

DEFAULT_RUNTIME = "chatrelay"

_LOGGERS = {}


def _log_dir() -> Path:
    path = Path(os.getenv("CHATRELAY_LOG_DIR", "logs"))
    path.mkdir(parents=True, exist_ok=True)
    return path


def _log_level() -> int:
    raw = (os.getenv("CHATRELAY_LOG_LEVEL") or "DEBUG").strip().upper()
    level = logging.getLevelName(raw)
    if isinstance(level, int):
        return level
    return logging.DEBUG


def get_logger(
    name: str,
    *,
    runtime: str = DEFAULT_RUNTIME,
) -> logging.Logger:
    """
    Create or retrieve a named logger.

    Parameters:
    - name: logger namespace (e.g. core.orchestrator, twitch.adapter)
    - runtime: log file prefix, one file per runtime per process run

    Environment:
    - CHATRELAY_LOG_DIR: directory for per-run log files (default: logs)
    - CHATRELAY_LOG_LEVEL: minimum level (default: DEBUG)
    """
    cache_key = f"{runtime}:{name}"
    if cache_key in _LOGGERS:
        return _LOGGERS[cache_key]

    logger = logging.getLogger(cache_key)
    logger.setLevel(_log_level())

    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
    )

    # ------------------------------
    # Console handler
    # ------------------------------
    console = logging.StreamHandler()
    console.setFormatter(formatter)
    logger.addHandler(console)

    # ------------------------------
    # File handler (one per run)
    # ------------------------------
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    logfile = _log_dir() / f"{runtime}-{timestamp}.log"

    file_handler = logging.FileHandler(logfile, encoding="utf-8")
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    logger.propagate = False
    _LOGGERS[cache_key] = logger

    return logger
