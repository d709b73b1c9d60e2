from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path

LOG_FILENAME = "stockledger.log"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def setup_logging(app) -> Path | None:
    """
    Level for the package loggers, plus a rotating file under LOG_DIR.

    Without LOG_DIR only the level is set and records go wherever Flask's
    default handler sends them (stderr).
    """
    level = logging.getLevelName(str(app.config.get("LOG_LEVEL", "INFO")).upper())
    if not isinstance(level, int):
        level = logging.INFO

    pkg_logger = logging.getLogger("stockledger")
    pkg_logger.setLevel(level)
    app.logger.setLevel(level)

    log_dir = app.config.get("LOG_DIR")
    if not log_dir:
        return None

    log_dir = Path(log_dir).expanduser()
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / LOG_FILENAME

    # avoid duplicate handlers when the factory runs more than once
    for lg in (pkg_logger, app.logger):
        if any(getattr(h, "baseFilename", "") == str(log_path.resolve()) for h in lg.handlers):
            continue
        handler = logging.handlers.RotatingFileHandler(
            log_path, maxBytes=5_000_000, backupCount=3, encoding="utf-8"
        )
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler.setLevel(level)
        lg.addHandler(handler)

    return log_path
