"""
Logging configuration for memoai.

Library modules only create loggers; handlers are attached here by the CLI
or by the embedding application.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

OPS_LOG_NAME = "memoai-ops.log"
OPS_LOG_MAX_BYTES = 1_000_000
OPS_LOG_BACKUPS = 3

_HTTP_LOGGERS = ("httpx", "httpcore")


def configure_quiet_mode(quiet: bool = True):
    """
    Silence chatty HTTP client loggers.

    httpx logs every request at INFO, which drowns out retry and job
    lifecycle messages.
    """
    level = logging.WARNING if quiet else logging.INFO
    for name in _HTTP_LOGGERS:
        logging.getLogger(name).setLevel(level)


def _stderr_handler(logger: logging.Logger):
    for h in logger.handlers:
        if isinstance(h, logging.StreamHandler) and getattr(h, "stream", None) is sys.stderr:
            return h
    return None


def enable_debug_mode():
    """Send DEBUG and above to stderr, including memoai and HTTP client loggers."""
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    if _stderr_handler(root) is None:
        console = logging.StreamHandler(sys.stderr)
        console.setLevel(logging.DEBUG)
        console.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)-7s %(name)s: %(message)s", datefmt="%H:%M:%S",
        ))
        root.addHandler(console)

    logging.getLogger("memoai").setLevel(logging.DEBUG)
    configure_quiet_mode(False)


def configure_ops_log(log_dir):
    """Configure a persistent operations log.

    Writes to {log_dir}/memoai-ops.log, rotating at 1MB and keeping three
    backups. Returns the handler so it can be removed later.
    """
    log_path = Path(log_dir) / OPS_LOG_NAME
    log_path.parent.mkdir(parents=True, exist_ok=True)

    ops = RotatingFileHandler(str(log_path), maxBytes=OPS_LOG_MAX_BYTES,
                              backupCount=OPS_LOG_BACKUPS)
    ops.setLevel(logging.INFO)
    ops.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s %(message)s", datefmt="%Y-%m-%dT%H:%M:%S",
    ))

    memoai_logger = logging.getLogger("memoai")
    memoai_logger.addHandler(ops)
    if memoai_logger.level == logging.NOTSET or memoai_logger.level > logging.INFO:
        memoai_logger.setLevel(logging.INFO)
    return ops
