"""
Loguru setup for HiNATA.

Every record carries a ``module`` extra so store and service logs can be
told apart; ``get_logger`` binds it, and records from the bare loguru
logger fall back to the emitting module's name.
"""

import sys
from pathlib import Path

from loguru import logger

from hinata.config import LoggingConfig

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[module]}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[module]}:{function}:{line} - {message}"


def setup_logging(config: LoggingConfig | None = None) -> list[int]:
    """
    Replace loguru's default sink with the configured ones.

    Args:
        config: Logging settings; defaults apply when omitted

    Returns:
        Handler ids of the sinks added
    """
    config = config or LoggingConfig()
    logger.remove()

    handlers = [_add_console_sink(config)]
    if config.log_to_file:
        handlers.append(_add_file_sink(config))
    return handlers


def _add_console_sink(config: LoggingConfig) -> int:
    return logger.add(
        sys.stderr,
        level=config.level.upper(),
        format=CONSOLE_FORMAT,
        colorize=True,
        filter=_with_module,
    )


def _add_file_sink(config: LoggingConfig) -> int:
    log_path = Path(config.log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    # serialize=True writes one JSON object per line and ignores the format
    return logger.add(
        log_path / "hinata_{time:YYYY-MM-DD}.log",
        level=config.level.upper(),
        format=FILE_FORMAT,
        rotation=config.file_rotation,
        retention=config.file_retention,
        compression=config.compression,
        serialize=config.serialize,
        enqueue=True,
        filter=_with_module,
    )


def _with_module(record) -> bool:
    record["extra"].setdefault("module", record["name"])
    return True


def get_logger(name: str):
    """Logger bound to a module name."""
    return logger.bind(module=name)
