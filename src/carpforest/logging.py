"""Logging utilities for carpforest.

This module registers a custom STAGE log level and provides a handle-based
switch for enabling/disabling carpforest logging with loguru.

Note:
    Importing this module removes loguru's default stderr handler (ID 0) so
    that ``enable_logging()`` does not produce duplicate lines. If handler 0
    was already removed by the host application the removal is a no-op.
    Configure your own loguru handlers *after* importing carpforest, or
    re-add a stderr handler explicitly.
"""

from __future__ import annotations

import contextlib
import sys
import threading
import warnings
from typing import TYPE_CHECKING, ClassVar, Final, Literal

from loguru import logger

if TYPE_CHECKING:
    from types import TracebackType

    from loguru import Record

PACKAGE_NAME: Final[str] = __name__.split(".")[0]

with contextlib.suppress(ValueError):
    logger.remove(0)

# STAGE marks the coarse steps of a study run: forest trained, model validated, forest saved.
STAGE_LEVEL: Final[str] = "STAGE"
STAGE_LEVEL_NUMBER: Final[int] = 25  # Between INFO (20) and WARNING (30)


def _register_stage_level() -> None:
    """Register the STAGE custom log level with loguru.

    If the level already exists with a different numeric value a UserWarning
    is emitted, because loguru cannot renumber an existing level.
    """
    try:
        existing_level = logger.level(STAGE_LEVEL)
    except ValueError:
        logger.level(STAGE_LEVEL, no=STAGE_LEVEL_NUMBER)
    else:
        if existing_level.no != STAGE_LEVEL_NUMBER:
            msg = f"STAGE level already registered as {existing_level.no}, expected {STAGE_LEVEL_NUMBER}"
            warnings.warn(msg, stacklevel=2)


_register_stage_level()

type LogLevel = Literal[
    "TRACE",
    "DEBUG",
    "STAGE",
    "INFO",
    "WARNING",
    "ERROR",
    "CRITICAL",
]

type LogFormat = Literal["short", "full"]


class LoggingHandle:
    """Handle owning one carpforest loguru handler.

    Call `disable()` or use the handle as a context manager to remove the
    handler again.

    Examples:
        >>> with enable_logging(level="DEBUG"):  # doctest: +SKIP
        ...     forest = train_forest(df, "taxon", ["diameter"], classes=["carp", "native"])
    """

    _active_ids: ClassVar[set[int]] = set()
    _lock: ClassVar[threading.Lock] = threading.Lock()

    def __init__(self, handler_id: int) -> None:
        """Initialize the logging handle.

        Args:
            handler_id (int): The loguru handler ID from logger.add().
        """
        self.handler_id: int | None = handler_id
        with LoggingHandle._lock:
            LoggingHandle._active_ids.add(handler_id)

    def disable(self) -> None:
        """Remove this handle's handler; disable carpforest logging when no handle remains."""
        with LoggingHandle._lock:
            if self.handler_id is None:
                return
            LoggingHandle._active_ids.discard(self.handler_id)
            with contextlib.suppress(ValueError):
                logger.remove(self.handler_id)
            self.handler_id = None
            if not LoggingHandle._active_ids:
                logger.disable(PACKAGE_NAME)

    def __enter__(self) -> LoggingHandle:
        """Enter context manager.

        Returns:
            LoggingHandle: This handle instance.
        """
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Exit context manager and disable logging."""
        self.disable()

    @classmethod
    def get_active_handle_count(cls) -> int:
        """Return the number of currently active logging handles.

        Returns:
            int: Count of active handles that have not been disabled.
        """
        with cls._lock:
            return len(cls._active_ids)


def enable_logging(
    *,
    level: LogLevel = STAGE_LEVEL,
    log_format: LogFormat = "short",
) -> LoggingHandle:
    """Enable carpforest logging on stderr.

    Args:
        level (LogLevel): Minimum log level to display. Defaults to "STAGE",
            which reports one line per trained, validated or saved forest.
            Use "DEBUG" to see per-tree details.
        log_format (LogFormat): "short" shows `time | level | function - message`;
            "full" adds module and line number.

    Returns:
        LoggingHandle: Independent handle for managing the logging handler.

    Note:
        When the last active handle is disabled, ``logger.disable("carpforest")``
        is called, which also silences handlers the application attached on
        its own.
    """
    logger.enable(PACKAGE_NAME)

    if log_format == "short":
        format_str = (
            "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "  # noqa: RUF027 - loguru format string
            "<cyan>{function}</cyan> - "
            "<level>{message}</level> {extra}"
        )
    else:  # "full"
        format_str = (
            "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "  # noqa: RUF027 - loguru format string
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
            "<level>{message}</level> {extra}"
        )

    handler_id = logger.add(
        sys.stderr,
        level=level,
        filter=_is_carpforest_record,
        format=format_str,
    )

    return LoggingHandle(handler_id)


def _is_carpforest_record(record: Record) -> bool:
    """Pass only records emitted from inside the carpforest package.

    Args:
        record (Record): The loguru Record object to filter.

    Returns:
        bool: True if the record is from the carpforest package.
    """
    name = record["name"]
    return name is not None and name.startswith(PACKAGE_NAME)
