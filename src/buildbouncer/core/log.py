"""Logging for build-bouncer runs, backed by logfire.

Everything logs through the module-level ``logger``. Events about a
particular check carry a ``check`` attribute with the check's name; the
file sink puts it in its own column so one check's events can be
grepped out of a parallel run.
"""

from __future__ import annotations

import contextlib
import os
from abc import abstractmethod
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import logfire
from opentelemetry.proto.logs.v1 import logs_pb2
from opentelemetry.sdk.trace import ReadableSpan
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SpanExporter,
    SpanExportResult,
)
from pydantic import Field, PrivateAttr, model_validator

from buildbouncer.core.base import BaseConfig

# Attribute naming the check an event belongs to
CHECK_ATTRIBUTE = "check"
NO_CHECK = "-"

LEVELS = {
    "trace": logs_pb2.SEVERITY_NUMBER_TRACE3,
    "debug": logs_pb2.SEVERITY_NUMBER_DEBUG,
    "info": logs_pb2.SEVERITY_NUMBER_INFO,
    "warn": logs_pb2.SEVERITY_NUMBER_WARN,
    "error": logs_pb2.SEVERITY_NUMBER_ERROR,
    "fatal": logs_pb2.SEVERITY_NUMBER_FATAL,
}

# Span attributes that are plumbing rather than event data
_INTERNAL_KEYS = frozenset({
    CHECK_ATTRIBUTE,
    "code.filepath", "code.lineno", "code.function",
    "logfire.msg", "logfire.level_num", "logfire.span_type",
    "logfire.msg_template", "logfire.json_schema",
})
_INTERNAL_PREFIXES = ("otel.", "telemetry.", "service.", "process.")

_current_logger: Logger | None = None


class _LoggerProxy:
    """Forwards to the configured Logger.

    Before setup_logger() runs, log calls do nothing and span() hands
    back an empty context, so runner code can log unconditionally.
    """

    def __getattr__(self, name):
        if _current_logger is not None:
            return getattr(_current_logger, name)
        if name in ("span", "check_span"):
            return lambda *args, **kwargs: contextlib.nullcontext()
        return lambda *args, **kwargs: None

    def __enter__(self):
        if _current_logger is None:
            return self
        return _current_logger.__enter__()

    def __exit__(self, *args):
        if _current_logger is None:
            return False
        return _current_logger.__exit__(*args)


logger = _LoggerProxy()


def level_number(name: str | None) -> int:
    """Severity number for a level name; unknown names mean info."""
    return LEVELS.get((name or "info").lower(), LEVELS["info"])


def level_name(number: int) -> str:
    """Highest level name at or below a severity number."""
    for name, threshold in reversed(LEVELS.items()):
        if number >= threshold:
            return name
    return "trace"


class LevelFilteringExporter(SpanExporter):
    """Passes on only spans at or above a minimum level."""

    def __init__(self, exporter: SpanExporter, min_level: str | None):
        self._exporter = exporter
        self._min_severity = level_number(min_level)

    def export(self, spans: list[ReadableSpan]) -> SpanExportResult:
        kept = [
            span for span in spans
            if (span.attributes or {}).get(
                "logfire.level_num", LEVELS["info"]
            ) >= self._min_severity
        ]
        if kept:
            return self._exporter.export(kept)
        return SpanExportResult.SUCCESS

    def shutdown(self) -> None:
        self._exporter.shutdown()

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        return self._exporter.force_flush(timeout_millis)


class Sink(BaseConfig):
    """Where log events go."""

    enabled: bool = Field(default=True, description="Enable this sink")
    level: str | None = Field(
        default=None,
        description=(
            "Log level for this sink; inherits Logger.level when unset. "
            "Valid: trace, debug, info, warn, error, fatal"
        ),
    )
    escape_special_characters: bool = Field(
        default=False,
        description="Escape newlines and tabs in messages",
    )
    format_template: str | None = Field(
        default=None,
        description=(
            "Line template with fields timestamp, level, check, message, "
            "location and function (None for JSON)"
        ),
    )

    _processor: Any = PrivateAttr(default=None)

    @staticmethod
    def _escape(text: str) -> str:
        return (
            text.replace("\\", "\\\\")
            .replace("\n", "\\n")
            .replace("\r", "\\r")
            .replace("\t", "\\t")
        )

    @staticmethod
    def event_fields(span) -> dict:
        """Template fields for one span."""
        attrs = span.attributes or {}
        filepath = attrs.get("code.filepath", "")
        lineno = attrs.get("code.lineno", "")
        return {
            "timestamp": datetime.fromtimestamp(
                span.start_time / 1e9, tz=UTC
            ),
            "level": level_name(
                attrs.get("logfire.level_num", LEVELS["info"])
            ),
            "check": attrs.get(CHECK_ATTRIBUTE) or NO_CHECK,
            "message": attrs.get("logfire.msg", span.name),
            "location": f"{filepath}:{lineno}" if filepath else "",
            "function": attrs.get("code.function", ""),
        }

    def format_event(self, span) -> str:
        """Render a span as one line, or as JSON without a template.

        Attributes other than the check name are appended as
        ``key=value`` pairs.
        """
        if not self.format_template:
            return span.to_json() + os.linesep

        fields = self.event_fields(span)
        if self.escape_special_characters:
            fields["message"] = self._escape(fields["message"])

        try:
            line = self.format_template.format(**fields)
        except KeyError as e:
            return f"ERROR: Invalid template field {e}\n"

        extra = sorted(
            (key, value)
            for key, value in (span.attributes or {}).items()
            if key not in _INTERNAL_KEYS
            and not key.startswith(_INTERNAL_PREFIXES)
        )
        if extra:
            pairs = " ".join(f"{key}={value!r}" for key, value in extra)
            line = f"{line} │ {pairs}"
        return line + "\n"

    @abstractmethod
    def create_processor(self, log_root: Path, run_name: str):
        """Span processor for this sink, or None if logfire handles it."""

    def close(self) -> None:
        """Shut the processor down, flushing pending events."""
        if self._processor:
            with contextlib.suppress(Exception):
                self._processor.shutdown()


class ConsoleSink(Sink):
    """Terminal output, rendered by logfire."""

    verbose: bool = Field(default=False, description="Show span details")
    colors: str = Field(
        default="auto",
        description="Color mode: auto, always, never",
    )

    def create_processor(self, log_root: Path, run_name: str):
        return None


class FileSink(Sink):
    """Appends one line per event to a file."""

    enabled: bool = Field(default=False, description="Enable file logging")
    path: str = Field(
        default="{log_root}/{run_name}/build-bouncer.log",
        description="Log file path; {log_root} and {run_name} are filled in",
    )
    format_template: str | None = Field(
        default="{timestamp:%Y-%m-%d %H:%M:%S} {level:<5} [{check}] {message}",
        description="Line template (None for JSON)",
    )

    _file: Any = PrivateAttr(default=None)

    def create_processor(self, log_root: Path, run_name: str):
        log_path = Path(self.path.format(log_root=log_root, run_name=run_name))
        log_path.parent.mkdir(parents=True, exist_ok=True)

        # Line buffered so a crash loses at most one line
        self._file = open(log_path, "a", buffering=1, encoding="utf-8")  # noqa: SIM115

        return BatchSpanProcessor(
            LevelFilteringExporter(
                ConsoleSpanExporter(out=self._file, formatter=self.format_event),
                self.level,
            )
        )

    def close(self) -> None:
        super().close()
        if self._file and not self._file.closed:
            with contextlib.suppress(OSError):
                self._file.close()


class LogfireSink(Sink):
    """Logfire cloud."""

    enabled: bool = Field(
        default=False,
        description="Send events to logfire.dev",
    )
    token: str | None = Field(
        default=None,
        description="API token (or the LOGFIRE_TOKEN env var)",
    )

    def create_processor(self, log_root: Path, run_name: str):
        return None


class Logger(BaseConfig):
    """Level methods over logfire plus the sinks they feed.

    close() closes every sink.
    """

    level: str = Field(
        default="info",
        description=(
            "Default level for sinks that do not set their own. "
            "Valid: trace, debug, info, warn, error, fatal"
        ),
    )
    console: ConsoleSink = Field(default_factory=ConsoleSink)
    file: FileSink = Field(default_factory=FileSink)
    logfire: LogfireSink = Field(default_factory=LogfireSink)

    @model_validator(mode="after")
    def _inherit_level(self) -> Logger:
        for sink in (self.console, self.file):
            if sink.level is None:
                sink.level = self.level
        return self

    def setup(self, log_root: Path, run_name: str) -> None:
        """Start the enabled sinks and configure logfire.

        Args:
            log_root: Root directory for log files
            run_name: Name of this run, used in file paths and the
                service name
        """
        for sink in (self.console, self.file, self.logfire):
            if sink.enabled:
                sink._processor = sink.create_processor(log_root, run_name)

        processors = [self.file._processor] if self.file._processor else []
        console = (
            logfire.ConsoleOptions(
                min_log_level=self.console.level,
                verbose=self.console.verbose,
                colors=self.console.colors,
                include_timestamps=True,
            )
            if self.console.enabled
            else False
        )
        logfire.configure(
            service_name=f"build-bouncer-{run_name}",
            send_to_logfire=self.logfire.enabled,
            token=self.logfire.token if self.logfire.enabled else None,
            console=console,
            additional_span_processors=processors or None,
        )

    def trace(self, msg: str, **kwargs):
        logfire.log(
            level=LEVELS["trace"], msg_template=msg, attributes=kwargs or None
        )

    def debug(self, msg: str, **kwargs):
        logfire.debug(msg, **kwargs)

    def info(self, msg: str, **kwargs):
        logfire.info(msg, **kwargs)

    def warn(self, msg: str, **kwargs):
        logfire.warn(msg, **kwargs)

    def error(self, msg: str, **kwargs):
        logfire.error(msg, **kwargs)

    def span(self, msg: str, **kwargs):
        return logfire.span(msg, **kwargs)

    def check_span(self, check: str, index: int, total: int):
        """Span covering one check's run.

        Usage:
            with logger.check_span(check.name, 1, 3):
                ...
        """
        return logfire.span(
            "Check {index}/{total}: {check}",
            check=check, index=index, total=total,
        )


def setup_logger(
    log_root: Path,
    run_name: str,
    console: ConsoleSink | None = None,
    file: FileSink | None = None,
    logfire: LogfireSink | None = None,
    level: str = "info",
) -> Logger:
    """Replace the global logger with a freshly configured one.

    Called by Config after loading; tests call it directly.

    Args:
        log_root: Root directory for log files
        run_name: Name of this run
        console: Console sink config (or None for defaults)
        file: File sink config (or None for defaults)
        logfire: Logfire sink config (or None for defaults)
        level: Default level for sinks that do not set one

    Returns:
        The new global Logger
    """
    global _current_logger

    if _current_logger is not None:
        _current_logger.close()

    _current_logger = Logger(
        level=level,
        console=console or ConsoleSink(),
        file=file or FileSink(),
        logfire=logfire or LogfireSink(),
    )
    _current_logger.setup(log_root, run_name)
    return _current_logger


def close_logger() -> None:
    """Close and forget the global logger."""
    global _current_logger

    if _current_logger is not None:
        _current_logger.close()
        _current_logger = None
