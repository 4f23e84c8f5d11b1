"""Loguru logger configuration."""

import sys
from pathlib import Path
from loguru import logger


def init_logger(log_dir: str = "logs", verbose: bool = False):
    """
    Initialize logging sinks.

    Args:
        log_dir: Directory for the rotated log files
        verbose: Lower the console level to DEBUG
    """
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    logger.remove()

    # Console output
    logger.add(
        sys.stderr,
        level="DEBUG" if verbose else "INFO",
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
               "<level>{level: <8}</level> | "
               "<cyan>{name}</cyan>:<cyan>{line}</cyan> - "
               "<level>{message}</level>",
        colorize=True
    )

    # File output (DEBUG)
    logger.add(
        log_path / "easyvalet_{time:YYYY-MM-DD}.log",
        level="DEBUG",
        format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{line} - {message}",
        rotation="00:00",
        retention="10 days",
        encoding="utf-8"
    )

    # Errors get their own file with backtraces
    logger.add(
        log_path / "easyvalet_errors_{time:YYYY-MM-DD}.log",
        level="ERROR",
        format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{line} - {message}\n{exception}",
        rotation="00:00",
        retention="10 days",
        encoding="utf-8",
        backtrace=True,
        diagnose=True
    )

    logger.info("Logger initialized successfully")
