"""
Logging Setup
=============
Structured logging for the whole bot, built on structlog.

Every trade, automation tick and failure is logged as an event name plus
keyword context, e.g. ``logger.info("buy_submitted", user="42", tx="0xab..")``.
On a terminal the output is a readable coloured line; when stdout is not a
TTY (systemd, docker) or ``json_logs`` is set, each event is one JSON line.
"""

import sys
import logging
from pathlib import Path

import structlog


def setup_logging(
    log_level: str = "INFO",
    log_dir: str | None = None,
    json_logs: bool | None = None,
    log_file: str = "bot.log",
) -> None:
    """
    Configure logging for the entire application.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR
        log_dir: Optional directory to also save logs to a file
        json_logs: Force JSON (True) or console (False) output; auto-detect if None
        log_file: File name inside log_dir
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
        file_handler = logging.FileHandler(log_path / log_file)
        file_handler.setLevel(numeric_level)
        logging.getLogger().addHandler(file_handler)

    # Third-party clients are chatty at INFO (every HTTP request)
    for noisy in ("httpx", "telegram.ext", "web3"):
        logging.getLogger(noisy).setLevel(max(numeric_level, logging.WARNING))

    if json_logs is None:
        json_logs = not sys.stdout.isatty()

    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    )

    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
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
        logger.info("sell_confirmed", token="0x12..", percentage=50)
    """
    return structlog.get_logger(module_name)
