"""
Logging utilities with structured logging support.
"""
from loguru import logger
import sys
import os
from pathlib import Path


def setup_logging(
    logs_dir: str,
    level: str = "INFO",
    rotation: str = "1 day",
    retention: str = "30 days",
    format_type: str = "text",
    enable_console: bool = True
) -> None:
    """
    Set up logging with rotation and multiple outputs.

    Args:
        logs_dir: Directory for log files
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        rotation: When to rotate logs (e.g., "1 day", "500 MB")
        retention: How long to keep logs (e.g., "30 days")
        format_type: Format type ("json" or "text")
        enable_console: Whether to log to console
    """
    log_path = Path(logs_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    # Remove default handler
    logger.remove()

    serialize = format_type == "json"
    log_format = (
        "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
        "{level: <8} | "
        "{name}:{function}:{line} | "
        "{message}"
    )

    if enable_console:
        logger.add(
            sys.stdout,
            format=(
                "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
                "<level>{level: <8}</level> | "
                "<cyan>{module}</cyan>:<cyan>{function}</cyan> | "
                "<level>{message}</level>"
            ),
            level=level,
            colorize=not serialize,
            serialize=serialize,
        )

    # Runtime log (all messages at INFO and above)
    logger.add(
        os.path.join(logs_dir, "runtime.log"),
        format=log_format,
        level="INFO",
        rotation=rotation,
        retention=retention,
        compression="zip",
        enqueue=True,
        serialize=serialize
    )

    # Error log (ERROR and above only)
    logger.add(
        os.path.join(logs_dir, "errors.log"),
        format=log_format,
        level="ERROR",
        rotation=rotation,
        retention="60 days",
        compression="zip",
        enqueue=True,
        serialize=serialize
    )

    # Trade audit log
    logger.add(
        os.path.join(logs_dir, "trades.log"),
        format=log_format,
        level="INFO",
        rotation=rotation,
        retention="90 days",
        compression="zip",
        enqueue=True,
        serialize=serialize,
        filter=lambda record: "TRADE" in record["message"] or "ORDER" in record["message"]
    )

    logger.info(f"Logging initialized: level={level}, dir={logs_dir}, format={format_type}")


def log_trade(action: str, symbol: str, qty: int, price: float, **kwargs) -> None:
    """
    Log a trade event with structured data.

    Args:
        action: Trade action (e.g., "BRACKET_SUBMITTED", "POSITION_CLOSED")
        symbol: Stock symbol
        qty: Quantity
        price: Reference price
        **kwargs: Additional trade metadata
    """
    extra_info = " | ".join([f"{k}={v}" for k, v in kwargs.items()])
    msg = f"TRADE | {action} | {symbol} | qty={qty} | price={price:.2f}"
    if extra_info:
        msg += f" | {extra_info}"
    logger.info(msg)


def log_error_with_context(error: Exception, context: str, **kwargs) -> None:
    """
    Log an error with additional context.

    Args:
        error: Exception object
        context: Context description
        **kwargs: Additional context metadata
    """
    extra_info = " | ".join([f"{k}={v}" for k, v in kwargs.items()])
    msg = f"ERROR | {context} | {type(error).__name__}: {str(error)}"
    if extra_info:
        msg += f" | {extra_info}"
    logger.opt(exception=error).error(msg)
