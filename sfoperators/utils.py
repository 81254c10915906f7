"""
Utility functions for sfoperators.

Includes logging setup, conflict retries and time helpers.
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from rich.console import Console
from rich.logging import RichHandler

from sfoperators.constants import MAX_CONFLICT_RETRIES, RETRY_DELAY
from sfoperators.errors import ConflictError, TransientError


# Global console for pretty output
console = Console()


def setup_logging(
    log_file: Optional[Path] = None,
    log_level: str = "INFO",
    log_format: str = "pretty",
    console_output: bool = True,
) -> logging.Logger:
    """
    Set up logging for the operator process.

    Args:
        log_file: Optional path to a log file (always structured JSON)
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: "structured" (JSON) or "pretty" (rich console)
        console_output: Also log to console

    Returns:
        Configured logger
    """
    logger = logging.getLogger("sfoperators")
    logger.setLevel(getattr(logging, log_level.upper()))
    logger.handlers = []  # Clear existing handlers

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(StructuredFormatter())
        logger.addHandler(file_handler)

    if console_output:
        if log_format == "pretty":
            console_handler = RichHandler(console=console, rich_tracebacks=True, show_time=False)
        else:
            console_handler = logging.StreamHandler()
            console_handler.setFormatter(StructuredFormatter())
        logger.addHandler(console_handler)

    return logger


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    EXTRA_FIELDS = ("resource", "operator", "event", "metadata")

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": utcnow().isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # Add extra fields if present
        for name in self.EXTRA_FIELDS:
            if hasattr(record, name):
                log_data[name] = getattr(record, name)

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO timestamp written by :func:`utcnow`, tolerating None."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


async def retry_on_conflict(
    func: Callable[[], Awaitable[Any]],
    max_attempts: int = MAX_CONFLICT_RETRIES,
    delay: float = RETRY_DELAY,
    logger: Optional[logging.Logger] = None,
) -> Any:
    """
    Retry an async read-modify-write closure on optimistic update conflicts.

    The closure must re-read the resource on every call so that each attempt
    is made against the current resource version.

    Args:
        func: Zero-argument coroutine function performing one attempt
        max_attempts: Maximum number of attempts
        delay: Seconds to wait between attempts
        logger: Logger for retry messages

    Returns:
        Result of the first attempt that does not conflict

    Raises:
        TransientError: If every attempt conflicted
    """
    attempt = 1
    while True:
        try:
            return await func()
        except ConflictError as e:
            if attempt >= max_attempts:
                if logger:
                    logger.warning(f"Giving up after {max_attempts} conflicting writes: {e}")
                raise TransientError(
                    f"Update still conflicting after {max_attempts} attempts: {e}"
                ) from e
            if logger:
                logger.debug(f"Conflict on attempt {attempt}/{max_attempts}: {e}. Retrying in {delay}s")
            await asyncio.sleep(delay)
            attempt += 1
