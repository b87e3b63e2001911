"""Logging setup for the job board.

All loggers live under the ``jobboard`` namespace. Library modules use
``logging.getLogger(__name__)``; entry points call ``setup_jobboard_logging``
once to attach handlers.
"""

import logging
from datetime import date
from pathlib import Path
from typing import Any, Optional, Union

LOGGER_NAME = "jobboard"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def setup_jobboard_logging(
    level: str = "INFO",
    log_dir: Optional[Union[str, Path]] = None,
) -> logging.Logger:
    """Configure the ``jobboard`` logger.

    Args:
        level: Log level name, case-insensitive.
        log_dir: If given, also write to ``{log_dir}/local-YYYY-MM-DD.log``.

    Returns:
        The configured ``jobboard`` logger.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Re-running setup replaces handlers instead of stacking duplicates
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)
    stream = logging.StreamHandler()
    stream.setFormatter(formatter)
    logger.addHandler(stream)

    if log_dir is not None:
        path = Path(log_dir)
        path.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path / f"local-{date.today().isoformat()}.log")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger, placing bare names under the ``jobboard`` namespace."""
    if name == LOGGER_NAME or name.startswith(LOGGER_NAME + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{LOGGER_NAME}.{name}")


def log_decision_event(
    logger: logging.Logger,
    application_id: str,
    decision: str,
    outcome: str,
    **fields: Any,
) -> None:
    """Emit one structured line per decision outcome."""
    level = logging.INFO if outcome in ("accepted", "rejected") else logging.WARNING
    details = " | ".join(f"{k}={v}" for k, v in fields.items() if v is not None)
    message = f"Decision {decision} | app={application_id} | outcome={outcome}"
    if details:
        message = f"{message} | {details}"
    logger.log(
        level,
        message,
        extra={"application_id": application_id, "decision": decision, "outcome": outcome},
    )
