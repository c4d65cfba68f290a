"""
Logging Setup
=============
Sets up structured logging for the whole swarm.

Two audiences read our logs:
- You, in the terminal or in logs/swarm.log (structlog console output)
- The dashboard, over the /ws push channel (see agent/activity.py)

Both are fed from the same call. Agents speak in "severities" that the
dashboard colours (info, success, warn, error, cmd, trade); structlog only
knows real log levels. SEVERITY_LEVELS maps one onto the other.

Uses 'structlog' so every line carries its context as key=value pairs:
    logger.info("buy_executed", token="PEPE", amount_sol=0.05)
"""

import sys
import logging
from pathlib import Path

import structlog

# Dashboard severity -> stdlib log level
SEVERITY_LEVELS = {
    "info": logging.INFO,
    "success": logging.INFO,
    "cmd": logging.INFO,
    "trade": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


def setup_logging(
    log_level: str = "INFO",
    log_dir: str | None = None,
    json_logs: bool = False,
) -> None:
    """
    Configure logging for the entire application.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR
        log_dir: Optional directory to also write swarm.log into
        json_logs: Render one JSON object per line instead of the console format
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=numeric_level,
    )

    if log_dir:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path / "swarm.log")
        file_handler.setLevel(numeric_level)
        logging.getLogger().addHandler(file_handler)

    # uvicorn's access log is noise next to agent output
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    if json_logs:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=[
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(module_name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a logger for a specific module.

    Usage:
        from utils.logger import get_logger
        logger = get_logger(__name__)
        logger.info("hunter_cycle_complete", scored=12)
    """
    return structlog.get_logger(module_name)


def log_at_severity(logger, severity: str, event: str, **fields) -> None:
    """Log `event` at the stdlib level matching a dashboard severity."""
    level = SEVERITY_LEVELS.get(severity, logging.INFO)
    logger.log(level, event, severity=severity, **fields)
