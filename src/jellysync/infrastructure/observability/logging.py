"""Logging setup: JSON or compact console output, correlation ids per sync job."""

import contextvars
import logging
import sys
import traceback
import uuid
from pathlib import Path
from typing import Any

from pythonjsonlogger import jsonlogger

from .sync_log import redact_sensitive

# Hey future me, one correlation id == one dispatched sync job. SyncDispatcher.run() sets it,
# and because asyncio tasks copy the current context, every item worker spawned by
# run_bounded() logs the same id. grep for it to follow users → libraries → items →
# activities of a single run even when two servers sync at the same time.
correlation_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "correlation_id", default=""
)

# Attributes every LogRecord has; anything else on a record came in through extra={}
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", None, None)).keys()
    | {"message", "asctime", "correlation_id", "taskName"}
)

# Loggers that are chatty at DEBUG (one line per Jellyfin page or SQL statement)
_NOISY_LOGGERS = ("httpx", "httpcore", "asyncio", "aiosqlite", "sqlalchemy.engine")


def get_correlation_id() -> str:
    """Correlation id of the current job, "" outside a job."""
    return correlation_id_var.get()


def set_correlation_id(correlation_id: str | None = None) -> str:
    """Bind a correlation id to the current context.

    Args:
        correlation_id: Id to use; a new UUID4 when None

    Returns:
        The id now in effect
    """
    value = correlation_id or str(uuid.uuid4())
    correlation_id_var.set(value)
    return value


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    return {k: v for k, v in vars(record).items() if k not in _RECORD_ATTRS}


class CorrelationIdFilter(logging.Filter):
    """Stamp the current correlation id on every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id()
        return True


class CompactExceptionFormatter(logging.Formatter):
    """Console formatter: one line per event plus extras, short exception chains.

    12:01:07 │ WARNING │ jellysync...paging:88 │ paging.fetch_failed page=3 server=home
    ╰─► ConnectError: All connection attempts failed
        File "jellyfin_client.py", line 131, in _request
          response = await client.request(method, path, params=params)
    ╰─► ExternalServiceError: Jellyfin request failed: GET /Items: ...
    """

    package_marker = "jellysync"

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extras = redact_sensitive(_extra_fields(record))
        if not extras:
            return line
        head, sep, tail = line.partition("\n")
        pairs = " ".join(f"{key}={value}" for key, value in sorted(extras.items()))
        return f"{head} {pairs}{sep}{tail}"

    def formatException(self, ei: Any) -> str:
        """Root cause first, only frames from our own package."""
        _exc_type, exc_value, _exc_tb = ei
        chain: list[BaseException] = []
        current: BaseException | None = exc_value
        while current is not None and current not in chain:
            chain.append(current)
            current = current.__cause__ or current.__context__

        lines: list[str] = []
        for exc in reversed(chain):
            lines.append(f"╰─► {type(exc).__name__}: {exc}")
            for frame in traceback.extract_tb(exc.__traceback__):
                if self.package_marker not in frame.filename or "site-packages" in frame.filename:
                    continue
                lines.append(
                    f'    File "{Path(frame.filename).name}", line {frame.lineno}, in {frame.name}'
                )
                if frame.line:
                    lines.append(f"      {frame.line.strip()}")
        return "\n".join(lines)


class CustomJsonFormatter(jsonlogger.JsonFormatter):  # type: ignore[name-defined,misc]
    """JSON formatter for log shipping; secrets in extras are masked."""

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record.update(redact_sensitive(_extra_fields(record)))
        log_record.update(
            timestamp=self.formatTime(record, self.datefmt),
            level=record.levelname,
            logger=record.name,
            location=f"{record.module}.{record.funcName}:{record.lineno}",
        )
        if getattr(record, "correlation_id", ""):
            log_record["correlation_id"] = record.correlation_id
        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)


# Listen future me, call this ONCE per process (sync_runtime() does). It replaces whatever
# handlers the root logger had, so calling it again switches format instead of doubling lines.
def configure_logging(
    log_level: str = "INFO",
    json_format: bool = False,
    app_name: str = "jellysync",
) -> None:
    """Install a single stdout handler on the root logger.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        json_format: JSON lines instead of the compact console format
        app_name: Logged once at startup
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    formatter: logging.Formatter
    if json_format:
        formatter = CustomJsonFormatter(
            "%(timestamp)s %(level)s %(name)s %(message)s", datefmt="%Y-%m-%dT%H:%M:%S"
        )
    else:
        formatter = CompactExceptionFormatter(
            fmt="%(asctime)s │ %(levelname)-7s │ %(name)s:%(lineno)d │ %(message)s",
            datefmt="%H:%M:%S",
        )

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.addFilter(CorrelationIdFilter())
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        "logging.configured",
        extra={"app_name": app_name, "log_level": log_level, "json_format": json_format},
    )
