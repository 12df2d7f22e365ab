"""Loguru Logger Configuration
==============================

Configures logging with:
- Console output with colors
- File rotation
- JSON format option
- Level filtering

Also provides trade-event helpers so every component reports entries,
exits, gate rejections and performance snapshots the same way.

Author: SURIOTA Team
"""
import sys
from pathlib import Path
from loguru import logger
from typing import Any, Dict, Optional


def setup_logger(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    rotation: str = "10 MB",
    retention: str = "7 days",
    json_format: bool = False,
    console: bool = True
):
    """Setup loguru logger

    Args:
        log_level: Minimum log level
        log_file: Path to log file (None = no file logging)
        rotation: When to rotate (size or time)
        retention: How long to keep old logs
        json_format: Use JSON format for file
        console: Enable console output
    """
    # Remove default handler
    logger.remove()

    console_format = (
        "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{extra[component]}</cyan> | "
        "<level>{message}</level>"
    )

    file_format = (
        "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
        "{level: <8} | "
        "{extra[component]} | "
        "{name}:{function}:{line} | "
        "{message}"
    )

    logger.configure(extra={"component": "core"})

    if console:
        logger.add(
            sys.stderr,
            format=console_format,
            level=log_level,
            colorize=True,
            backtrace=True,
            diagnose=False
        )

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        logger.add(
            str(log_path),
            format=file_format,
            serialize=json_format,
            level=log_level,
            rotation=rotation,
            retention=retention,
            compression="gz",
            enqueue=True,  # Thread-safe
            backtrace=True,
            diagnose=False
        )

    logger.info(f"Logger configured: level={log_level}, file={log_file}")


def setup_logger_from_settings(settings=None):
    """Setup logger from the `logging` section of a Settings instance"""
    if settings is None:
        from config import config as settings

    cfg = settings.logging
    setup_logger(
        log_level=cfg.level,
        log_file=cfg.file,
        rotation=cfg.rotation,
        retention=cfg.retention,
        json_format=cfg.json_format
    )


def get_logger(name: str = None):
    """Get logger instance

    Args:
        name: Logger name (module name)

    Returns:
        Logger instance
    """
    if name:
        return logger.bind(component=name)
    return logger


# Component-specific loggers
def get_gate_logger():
    """Get logger for entry gate pipeline"""
    return logger.bind(component="gates")


def get_sizer_logger():
    """Get logger for position sizing"""
    return logger.bind(component="sizer")


def get_ledger_logger():
    """Get logger for position ledger"""
    return logger.bind(component="ledger")


def get_exit_logger():
    """Get logger for exit detection"""
    return logger.bind(component="exit")


def get_engine_logger():
    """Get logger for tick engine and scheduler"""
    return logger.bind(component="engine")


def _format_details(details: Dict[str, Any]) -> str:
    return ", ".join(f"{key}={value}" for key, value in details.items())


def log_trade_entry(instrument: str, decision: str, details: Dict[str, Any]):
    """Log trade entry decision"""
    get_ledger_logger().bind(instrument=instrument, **details).info(
        f"Trade Entry: {instrument} - {decision} ({_format_details(details)})"
    )


def log_trade_exit(instrument: str, profit_pct: float, reason: str):
    """Log trade exit with WIN/LOSS status"""
    status = "WIN" if profit_pct > 0 else "LOSS"
    get_ledger_logger().bind(instrument=instrument, profit_pct=profit_pct, reason=reason).info(
        f"Trade Exit: {instrument} - {status} ({profit_pct:.2f}%) [{reason}]"
    )


def log_filter_rejection(instrument: str, gate: str, reason: Optional[str] = None):
    """Log risk filter rejection (informational, one per rejected stage)"""
    get_gate_logger().bind(instrument=instrument, gate=gate).info(
        f"Entry Blocked: {instrument} - {gate}: {reason}"
    )


def log_performance(stats: Dict[str, Any]):
    """Log performance snapshot"""
    get_ledger_logger().bind(**stats).info(f"Performance Snapshot: {_format_details(stats)}")

