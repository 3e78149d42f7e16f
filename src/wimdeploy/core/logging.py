"""
WimDeploy structured logging.

Every native tool invocation and deployment stage is logged with key/value
context so a failed deployment can be reconstructed from the log file.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog
from structlog.types import EventDict, WrappedLogger

if TYPE_CHECKING:
    from wimdeploy.core.config import LoggingConfig


_configured = False


def add_timestamp(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add ISO format timestamp to log events."""
    event_dict["timestamp"] = datetime.now().isoformat()
    return event_dict


def add_log_level(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add log level to event dict."""
    event_dict["level"] = method_name.upper()
    return event_dict


def _build_handlers(config: LoggingConfig) -> list[logging.Handler]:
    handlers: list[logging.Handler] = []

    if config.console_enabled:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(getattr(logging, config.level))
        handlers.append(console_handler)

    if config.file_enabled:
        config.log_directory.mkdir(parents=True, exist_ok=True)
        log_file = config.log_directory / f"wimdeploy_{datetime.now().strftime('%Y%m%d')}.log"
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        # The file always gets the full command trace
        file_handler.setLevel(logging.DEBUG)
        handlers.append(file_handler)

    return handlers


def setup_logging(config: LoggingConfig) -> None:
    """Configure structured logging for WimDeploy."""
    global _configured

    if _configured:
        return

    logging.basicConfig(
        level=logging.DEBUG,
        handlers=_build_handlers(config),
        format="%(message)s",
    )

    shared_processors: list[structlog.types.Processor] = [
        structlog.stdlib.add_logger_name,
        add_timestamp,
        add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if config.json_format:
        renderers: list[structlog.types.Processor] = [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        renderers = [structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())]

    structlog.configure(
        processors=shared_processors + renderers,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    _configured = True


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name or "wimdeploy")


class OperationLogger:
    """Context manager that logs the start, end and failure of a deployment stage."""

    def __init__(
        self,
        operation: str,
        logger: structlog.stdlib.BoundLogger | None = None,
        **context: Any,
    ):
        self.operation = operation
        self.logger = logger or get_logger()
        self.context = context
        self.start_time: datetime | None = None
        self.duration_seconds: float = 0.0

    def __enter__(self) -> OperationLogger:
        self.start_time = datetime.now()
        self.logger.info(
            f"Starting {self.operation}",
            operation=self.operation,
            **self.context,
        )
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        if self.start_time:
            self.duration_seconds = (datetime.now() - self.start_time).total_seconds()

        if exc_type is not None:
            self.logger.error(
                f"Failed {self.operation}",
                operation=self.operation,
                duration_seconds=self.duration_seconds,
                error_type=exc_type.__name__,
                error=str(exc_val),
                **self.context,
            )
        else:
            self.logger.info(
                f"Completed {self.operation}",
                operation=self.operation,
                duration_seconds=self.duration_seconds,
                **self.context,
            )

    def update(self, **additional_context: Any) -> None:
        """Update the operation context."""
        self.context.update(additional_context)


class SessionLogger:
    """
    Mirrors session events into structlog and a per-session JSON file.

    Entries that concern a deployment carry the target ``disk_number`` so the
    saved file can tell which disks were touched and which of them failed.
    """

    def __init__(
        self,
        session_file: Path,
        session_id: str,
        logger: structlog.stdlib.BoundLogger | None = None,
    ):
        self.session_file = session_file
        self.session_id = session_id
        self.logger = (logger or get_logger()).bind(session_id=session_id)
        self.entries: list[dict[str, Any]] = []
        self.session_file.parent.mkdir(parents=True, exist_ok=True)

    def log(self, level: str, message: str, disk_number: int | None = None, **kwargs: Any) -> None:
        entry: dict[str, Any] = {
            "timestamp": datetime.now().isoformat(),
            "level": level,
            "message": message,
        }
        if disk_number is not None:
            entry["disk_number"] = disk_number
            kwargs["disk_number"] = disk_number
        entry.update(kwargs)
        self.entries.append(entry)

        log_method = getattr(self.logger, level.lower(), self.logger.info)
        log_method(message, **kwargs)

    def info(self, message: str, disk_number: int | None = None, **kwargs: Any) -> None:
        self.log("INFO", message, disk_number, **kwargs)

    def warning(self, message: str, disk_number: int | None = None, **kwargs: Any) -> None:
        self.log("WARNING", message, disk_number, **kwargs)

    def error(self, message: str, disk_number: int | None = None, **kwargs: Any) -> None:
        self.log("ERROR", message, disk_number, **kwargs)

    def summary(self) -> dict[str, Any]:
        disks = {e["disk_number"] for e in self.entries if "disk_number" in e}
        failed = {e["disk_number"] for e in self.entries if "disk_number" in e and e["level"] == "ERROR"}
        return {
            "total_entries": len(self.entries),
            "errors": sum(1 for e in self.entries if e["level"] == "ERROR"),
            "warnings": sum(1 for e in self.entries if e["level"] == "WARNING"),
            "disks": sorted(disks),
            "failed_disks": sorted(failed),
        }

    def save(self) -> None:
        with open(self.session_file, "w") as f:
            json.dump(
                {
                    "session_id": self.session_id,
                    "entries": self.entries,
                    "summary": self.summary(),
                },
                f,
                indent=2,
                default=str,
            )
