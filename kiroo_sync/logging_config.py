"""Logging helpers for the kiroo-sync backend.

All loggers live under the ``kiroo_sync`` hierarchy so a single call to
:func:`setup_logging` configures the whole service.
"""

import logging
import sys

ROOT_LOGGER = "kiroo_sync"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Attach a stream handler to the root service logger.

    Safe to call more than once; only one handler is ever installed.
    """
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    if not any(getattr(h, "_kiroo_sync", False) for h in logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._kiroo_sync = True
        logger.addHandler(handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Return a logger inside the service hierarchy."""
    if name != ROOT_LOGGER and not name.startswith(f"{ROOT_LOGGER}."):
        name = f"{ROOT_LOGGER}.{name}"
    return logging.getLogger(name)


_sync_logger = get_logger("kiroo_sync.sync")
_auth_logger = get_logger("kiroo_sync.auth")


def log_sync_operation(
    log_prefix: str,
    operation: str,
    table: str,
    key: str,
    success: bool,
    error: str | None = None,
) -> None:
    """Log a single reconciled record."""
    if success:
        _sync_logger.info(f"{operation.upper()} | {log_prefix} | {table}/{key}")
    else:
        _sync_logger.warning(f"{operation.upper()} FAILED | {log_prefix} | {table}/{key} | {error}")


def log_auth_event(event: str, detail: str, success: bool = True) -> None:
    """Log an authentication event (never the raw credential)."""
    if success:
        _auth_logger.info(f"AUTH {event} | {detail}")
    else:
        _auth_logger.warning(f"AUTH {event} FAILED | {detail}")
