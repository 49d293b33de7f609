"""
Logging Configuration for the EIP-7702 Gateway

Library modules only call ``logging.getLogger(__name__)``; applications call
``setup_logger`` once to attach handlers:

- Console handler (stdout)
- Optional daily-rotated log file
- Optional separate error log
- Structured one-line collection records via ``log_collection``
"""

import logging
import sys
from logging.handlers import RotatingFileHandler, TimedRotatingFileHandler
from pathlib import Path
from typing import Optional, Union

# Log formats
DETAILED_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"
SIMPLE_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logger(
    name: str = "eip7702_gateway",
    level: int = logging.INFO,
    log_dir: Optional[Union[str, Path]] = None,
    console: bool = True,
    detailed: bool = False,
) -> logging.Logger:
    """
    Setup a logger with console and optional file handlers.

    Args:
        name: Logger name; the default configures every gateway module
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Directory for ``<name>.log`` and ``<name>_errors.log``;
            no files are written when omitted
        console: Whether to log to console
        detailed: Whether to use detailed format (includes file/line)

    Returns:
        Configured logger instance

    Example:
        >>> logger = setup_logger(level=logging.DEBUG, log_dir="logs")
        >>> logger.info("Starting collection run")
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Prevent duplicate handlers
    if logger.handlers:
        return logger

    log_format = DETAILED_FORMAT if detailed else SIMPLE_FORMAT
    formatter = logging.Formatter(log_format, datefmt=DATE_FORMAT)

    if console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    if log_dir is not None:
        directory = Path(log_dir)
        directory.mkdir(parents=True, exist_ok=True)

        file_handler = TimedRotatingFileHandler(
            directory / f"{name}.log",
            when="midnight",
            interval=1,
            backupCount=30,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

        error_handler = RotatingFileHandler(
            directory / f"{name}_errors.log",
            maxBytes=10 * 1024 * 1024,  # 10 MB
            backupCount=5,
            encoding="utf-8",
        )
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(logging.Formatter(DETAILED_FORMAT, datefmt=DATE_FORMAT))
        logger.addHandler(error_handler)

    return logger


def log_collection(
    logger: logging.Logger,
    delegating_address: str,
    mode: Optional[str],
    status: str,
    tx_hash: Optional[str] = None,
    error: Optional[str] = None,
) -> None:
    """
    Log one collection attempt in structured format.

    Args:
        logger: Logger instance
        delegating_address: Payment address that was swept
        mode: Delegation mode ("fresh", "reuse", "overwrite") if known
        status: Transaction status value
        tx_hash: Transaction hash
        error: Error message for failed attempts
    """
    msg = f"COLLECT | {status.upper()} | {delegating_address} | mode: {mode or '-'}"
    if tx_hash and tx_hash != "0x":
        msg += f" | TX: {tx_hash}"
    if error:
        msg += f" | {error}"

    if status == "success":
        logger.info(msg)
    else:
        logger.error(msg)
