"""Logging configuration for the CFO assistant."""

import logging
import sys
from pathlib import Path

from cfo_assistant.exceptions import CFOAssistantError

# Default log file name
DEFAULT_LOG_FILE = "cfo_assistant.log"

# Root logger name every module logger hangs off
ROOT_LOGGER_NAME = "cfo_assistant"

# Context keys masked in operation log lines
SENSITIVE_FIELDS = {
    "password", "token", "access_token", "refresh_token", "secret",
    "client_secret", "api_key", "account_number",
}

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _sanitize_context(context: dict[str, object]) -> dict[str, object]:
    """Mask sensitive fields in a context dict.

    Args:
        context: Dictionary of context values.

    Returns:
        Dictionary with sensitive fields masked.
    """
    return {k: "***" if k.lower() in SENSITIVE_FIELDS else v for k, v in context.items()}


def setup_logging(
    level: str = "INFO",
    log_file: str | None = None,
    console_output: bool = True,
) -> logging.Logger:
    """Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_file: Path to log file. If None, uses DEFAULT_LOG_FILE.
        console_output: Whether to also output to stderr.

    Returns:
        The package root logger.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(numeric_level)
    logger.handlers.clear()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    if log_file is None:
        log_file = DEFAULT_LOG_FILE

    file_handler = logging.FileHandler(Path(log_file), encoding="utf-8")
    file_handler.setLevel(numeric_level)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    if console_output:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(numeric_level)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger for a specific module.

    Module names already inside the package are used as-is so that
    ``get_logger(__name__)`` does not double the prefix.

    Args:
        name: Module name (typically __name__).

    Returns:
        A logger instance for the module.
    """
    if name == ROOT_LOGGER_NAME or name.startswith(ROOT_LOGGER_NAME + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


class LogContext:
    """Context manager that logs the start, end and failure of an operation.

    Domain errors (``CFOAssistantError``) are logged as one line with their
    kind plus the entity id and operation they carry. Any other exception is
    logged with a traceback. The exception always propagates.
    """

    def __init__(self, logger: logging.Logger, operation: str, **context: object):
        """Initialize log context.

        Args:
            logger: Logger instance to use.
            operation: Name of the operation being performed.
            **context: Entity ids and other values to include in log messages.
        """
        self.logger = logger
        self.operation = operation
        self.context = context

    def _context_str(self, extra: dict[str, object] | None = None) -> str:
        sanitized = _sanitize_context({**self.context, **(extra or {})})
        return ", ".join(f"{k}={v}" for k, v in sanitized.items())

    def __enter__(self) -> "LogContext":
        self.logger.debug(f"Starting {self.operation}: {self._context_str()}")
        return self

    def __exit__(
        self,
        exc_type: type | None,
        exc_val: BaseException | None,
        exc_tb: object | None,
    ) -> bool:
        if isinstance(exc_val, CFOAssistantError):
            origin: dict[str, object] = {}
            if exc_val.entity_id is not None:
                origin["entity_id"] = exc_val.entity_id
            if exc_val.operation is not None and exc_val.operation != self.operation:
                origin["raised_in"] = exc_val.operation
            self.logger.error(
                f"{self.operation} failed ({self._context_str(origin)}): "
                f"{exc_val.kind}: {exc_val.message}"
            )
        elif exc_type is not None:
            self.logger.error(
                f"Error in {self.operation} ({self._context_str()}): "
                f"{exc_type.__name__}: {exc_val}",
                exc_info=True,
            )
        else:
            self.logger.debug(f"Completed {self.operation}")
        return False
