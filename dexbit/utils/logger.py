"""Logging for the dashboard.

One ``dexbit`` logger, configured on import:
  - console at ``settings.LOG_LEVEL``
  - ``logs/dexbit_<timestamp>.log`` for this run (DEBUG)
  - ``logs/dexbit.log`` rewritten on every start, so it always holds the current run

Run files beyond the newest ``KEEP_RUN_LOGS`` are deleted at start-up.
Components log through the shared ``logger`` with a ``[Tag]`` prefix.
"""

import contextlib
import logging
import sys
from datetime import datetime
from pathlib import Path

from dexbit.config import settings

LOGGER_NAME = "dexbit"
KEEP_RUN_LOGS = 10

_FORMAT = "[%(asctime)s] %(levelname)-8s %(name)s - %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _file_handler(path: Path, mode: str = "a") -> logging.FileHandler:
    handler = logging.FileHandler(path, mode=mode, encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    return handler


def prune_run_logs(logs_dir: Path, keep: int = KEEP_RUN_LOGS) -> int:
    """Delete all but the ``keep`` newest run logs. Returns how many went."""
    runs = sorted(logs_dir.glob(f"{LOGGER_NAME}_*.log"), key=lambda p: p.stat().st_mtime)
    stale = runs[:-keep] if keep > 0 else runs
    for path in stale:
        # Another process may hold or have removed it already
        with contextlib.suppress(OSError):
            path.unlink()
    return len(stale)


def configure_logging(logs_dir: Path | None = None) -> logging.Logger:
    log = logging.getLogger(LOGGER_NAME)
    if log.handlers:
        return log
    log.setLevel(logging.DEBUG)

    logs_dir = logs_dir or settings.LOGS_DIR
    logs_dir.mkdir(parents=True, exist_ok=True)
    run_log = logs_dir / f"{LOGGER_NAME}_{datetime.now():%Y-%m-%d_%H-%M-%S}.log"

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(getattr(logging, settings.LOG_LEVEL, logging.INFO))
    handlers: list[logging.Handler] = [console, _file_handler(run_log)]
    with contextlib.suppress(OSError):
        handlers.append(_file_handler(logs_dir / f"{LOGGER_NAME}.log", mode="w"))

    formatter = logging.Formatter(_FORMAT, datefmt=_DATE_FORMAT)
    for handler in handlers:
        handler.setFormatter(formatter)
        log.addHandler(handler)

    pruned = prune_run_logs(logs_dir)
    log.info("Log started: %s (pruned %d old run logs)", run_log.name, pruned)
    return log


logger = configure_logging()
