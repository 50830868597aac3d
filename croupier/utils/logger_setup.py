"""Rotating file logging for the casino.

Hosts do not always let the bot write to ``./logs``.  When the requested
directory cannot be created the file moves to the system temp directory, and
if that fails too the logger keeps only its stdout handler.
"""

import os
import logging
import tempfile
from pathlib import Path
from logging.handlers import RotatingFileHandler

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
MAX_BYTES = 2_000_000
BACKUPS = 5


def _rotating(path: Path) -> RotatingFileHandler:
    return RotatingFileHandler(path, maxBytes=MAX_BYTES, backupCount=BACKUPS, encoding="utf-8")


def setup_logger(name: str, log_file: str, level: int = logging.INFO) -> logging.Logger:
    """Attach a rotating file handler and a stream handler to logger ``name``.

    ``name`` is normally the package name so every module logger below it
    shares the handlers.  A bare file name for ``log_file`` lands in
    ``./logs``.  Calling this twice for the same name is a no-op.
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    logger.setLevel(level)
    # these handlers stand in for the root's stdout handler on this subtree
    logger.propagate = False

    target = Path(os.path.dirname(log_file) or "logs") / os.path.basename(log_file)
    formatter = logging.Formatter(LOG_FORMAT)

    handler = None
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        handler = _rotating(target)
    except OSError:
        fallback_dir = Path(tempfile.gettempdir()) / "croupier_logs"
        try:
            fallback_dir.mkdir(exist_ok=True)
            handler = _rotating(fallback_dir / target.name)
            logger.warning("Cannot write %s; logging to %s", target, fallback_dir / target.name)
        except OSError:
            handler = None

    if handler is not None:
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    logger.addHandler(console)
    return logger
