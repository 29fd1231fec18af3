# =============================================================================
# gramsehat_core/logging/config.py
# Logging Setup for the Device Process
# =============================================================================

import logging
import sys
import time
from datetime import date
from pathlib import Path
from typing import List, Optional, Union


LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

LOG_DIR = Path("logs")

# Network client stacks log every request at INFO/DEBUG
QUIET_LOGGERS = ("urllib3", "httpx", "httpcore", "hpack", "supabase", "postgrest")


def resolve_level(level: Union[int, str]) -> int:
    """Accept 10, "debug" or "DEBUG"; unknown names fall back to INFO."""
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logging(
    level: Union[int, str] = logging.INFO,
    log_to_file: bool = False,
    log_filename: Optional[str] = None,
    log_dir: Optional[Path] = None,
) -> Optional[Path]:
    """
    Configure the root logger for the device process.

    Console output always goes to stdout. With ``log_to_file`` a daily file
    (``gramsehat_YYYY-MM-DD.log`` unless named) is written as well, so a
    health worker's device keeps a trail of sync passes between visits.

    Returns:
        Path of the log file, or None when logging to console only
    """
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    log_path = None

    if log_to_file:
        directory = Path(log_dir or LOG_DIR)
        directory.mkdir(parents=True, exist_ok=True)
        log_path = directory / (log_filename or f"gramsehat_{date.today().isoformat()}.log")
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))

    logging.basicConfig(
        level=resolve_level(level),
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        handlers=handlers,
        force=True,
    )

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger("gramsehat_core").debug(f"Logging configured (file: {log_path})")
    return log_path


def get_logger(name: str) -> logging.Logger:
    """Logger for a module or service class."""
    return logging.getLogger(name)


class LogContext:
    """
    Time an operation and log how it ended.

    Usage:
        with LogContext(logger, "Evaluating schemes"):
            engine.evaluate(profile)
    """

    def __init__(self, logger: logging.Logger, operation: str):
        self.logger = logger
        self.operation = operation
        self.elapsed: Optional[float] = None
        self._started: Optional[float] = None

    def __enter__(self) -> "LogContext":
        self._started = time.perf_counter()
        self.logger.debug(f"{self.operation}: started")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.elapsed = time.perf_counter() - self._started
        if exc_type is None:
            self.logger.info(f"{self.operation}: done in {self.elapsed * 1000:.0f} ms")
        else:
            self.logger.warning(f"{self.operation}: failed after {self.elapsed * 1000:.0f} ms ({exc_val})")
        return False
