"""Logging configuration for vradriver.

Two kinds of records flow through the ``vradriver`` logger: progress
narration from ``ActionHandler`` (bound with ``narration=True``) and
diagnostics from the driver, the poll engine and the transports. The console
can be narrowed to narration alone while the file sink keeps everything.
Logging is disabled on import (library behavior) and enabled by
``setup_logging``.

Example:
    from vradriver.logging import LogConfig, setup_logging, teardown_logging

    handler_ids = setup_logging(LogConfig(narration_only=True, file="vradriver.log"))
    try:
        driver.allocate_machine(action_handler, spec, options)
    finally:
        teardown_logging(handler_ids)
"""

from __future__ import annotations

import sys
from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal, TypeAlias

from loguru import logger

if TYPE_CHECKING:
    from loguru import Record

logger.disable("vradriver")

LogLevel: TypeAlias = Literal["DEBUG", "INFO", "WARNING", "ERROR"]

NAMESPACE = "vradriver"

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)

NARRATION_FORMAT = "<green>{time:HH:mm:ss}</green> <level>{message}</level>"

FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}"

# Narration-only logger used by ActionHandler
narrator = logger.bind(narration=True)


def _in_namespace(record: Record) -> bool:
    name = record["name"] or ""
    return name == NAMESPACE or name.startswith(f"{NAMESPACE}.")


def _is_narration(record: Record) -> bool:
    return _in_namespace(record) and bool(record["extra"].get("narration"))


@dataclass(frozen=True, slots=True)
class LogConfig:
    """Logging configuration.

    Attributes:
        level: Minimum level for the console sink.
        file: Path to a log file capturing every vradriver record at DEBUG.
        console: Whether to log to stderr.
        narration_only: Restrict the console to progress narration.
        rotation: File rotation policy (e.g., "50 MB", "1 day").
        retention: Number of old log files to keep.
    """

    level: LogLevel = "INFO"
    file: str | None = None
    console: bool = True
    narration_only: bool = False
    rotation: str = "50 MB"
    retention: int = 10


def setup_logging(config: LogConfig) -> list[int]:
    """Enable vradriver logging and return handler IDs for cleanup."""
    logger.enable(NAMESPACE)
    handler_ids: list[int] = []

    if config.console:
        handler_ids.append(
            logger.add(
                sys.stderr,
                level=config.level,
                format=NARRATION_FORMAT if config.narration_only else CONSOLE_FORMAT,
                colorize=True,
                filter=_is_narration if config.narration_only else _in_namespace,
            )
        )

    if config.file:
        handler_ids.append(
            logger.add(
                config.file,
                level="DEBUG",
                format=FILE_FORMAT,
                rotation=config.rotation,
                retention=config.retention,
                compression="zip",
                diagnose=False,  # tracebacks may carry credentials
                enqueue=True,
                filter=_in_namespace,
            )
        )

    return handler_ids


def teardown_logging(handler_ids: list[int]) -> None:
    for hid in handler_ids:
        logger.remove(hid)
    logger.disable(NAMESPACE)
