"""Structured logging configuration."""

import logging
import sys
from typing import TextIO

from postpartum_triage.core.config import settings


class StructuredFormatter(logging.Formatter):
    """Custom formatter for structured log output."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record with structured data."""
        log_data = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # Add extra fields if present
        for key in ("request_id", "actor", "case_id", "change_id", "action"):
            if hasattr(record, key):
                log_data[key] = getattr(record, key)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Simple key=value format for readability
        parts = [f"{k}={v}" for k, v in log_data.items()]
        return " ".join(parts)


def setup_logging(stream: TextIO | None = None) -> None:
    """Configure application logging.

    Args:
        stream: Output stream (defaults to stdout; the CLI logs to stderr)
    """
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(stream or sys.stdout)
    console_handler.setLevel(log_level)

    if settings.is_dev:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )
    else:
        formatter = StructuredFormatter()

    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name."""
    return logging.getLogger(name)


class ChangeLogger:
    """Logger for case creation and ledger entries.

    Mirrors what is written to the change ledger so operators can follow
    case activity from the process log without querying the database.
    """

    def __init__(self) -> None:
        self.logger = get_logger("case_changes")

    def case_created(self, case_id: str, level: str, source: str) -> None:
        """Log creation of a new case record."""
        self.logger.info(
            f"CASE_CREATED: case={case_id} level={level} source={source}",
            extra={"case_id": case_id, "action": "CASE_CREATED"},
        )

    def change_recorded(
        self,
        change_type: str,
        editor: str,
        case_id: str,
        change_id: str,
        sequence: int,
        fields: list[str],
    ) -> None:
        """Log a committed ledger entry."""
        self.logger.info(
            f"{change_type}: case={case_id} change={change_id} seq={sequence} "
            f"editor={editor} fields={','.join(fields)}",
            extra={
                "actor": editor,
                "case_id": case_id,
                "change_id": change_id,
                "action": change_type,
            },
        )


change_logger = ChangeLogger()
