"""
Logging for the crosspost core.

Console output goes through ``ContextAwareLogger``, which renders ``extra``
as ``| key=value`` pairs. ``AzureQueueHandler`` ships the same records as
JSON to a storage queue when queue logging is enabled.

Token material never reaches a handler: extras whose key names a secret are
masked before the record is created.
"""

import logging
import os
import sys
import traceback
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Union

from azure.core.exceptions import ResourceExistsError
from azure.storage.queue import QueueClient

from ..config import get_config
from .json_utils import dumps

_service_logger: Optional["ContextAwareLogger"] = None

REDACTED = "***"

SENSITIVE_KEYS = frozenset(
    [
        "access_token",
        "refresh_token",
        "token",
        "ciphertext",
        "signature",
        "master_key",
        "authorization_code",
    ]
)

# Attributes every LogRecord carries; anything else came in through ``extra``.
_STANDARD_RECORD_FIELDS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__
) | {"message", "asctime", "taskName", "principal_id", "correlation_id"}


def redact(extra: Mapping[str, Any]) -> Dict[str, Any]:
    """Copy of ``extra`` with secret-bearing values masked."""
    return {
        key: REDACTED if key.lower() in SENSITIVE_KEYS and value is not None else value
        for key, value in extra.items()
    }


def _to_level(level: Union[int, str]) -> int:
    if isinstance(level, str):
        return getattr(logging, level.upper(), logging.INFO)
    return level


class ContextAwareLogger:
    """
    Wraps a stdlib logger so extras show up in the message text as well as on
    the record, whatever formatter the host process installs.
    """

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    @staticmethod
    def render(msg: str, extra: Mapping[str, Any]) -> str:
        if not extra:
            return msg
        return " | ".join([msg] + [f"{key}={value}" for key, value in extra.items()])

    def _log(self, level: str, msg: str, **kwargs) -> None:
        extra = redact(kwargs.pop("extra", None) or {})
        getattr(self.logger, level)(self.render(msg, extra), extra=extra, **kwargs)

    def set_level(self, level: Union[int, str]) -> None:
        self.logger.setLevel(_to_level(level))

    def debug(self, msg, **kwargs):
        self._log("debug", msg, **kwargs)

    def info(self, msg, **kwargs):
        self._log("info", msg, **kwargs)

    def warning(self, msg, **kwargs):
        self._log("warning", msg, **kwargs)

    def error(self, msg, **kwargs):
        self._log("error", msg, **kwargs)

    def exception(self, msg, **kwargs):
        self._log("exception", msg, **kwargs)


class PrincipalContextFilter(logging.Filter):
    """Stamps the thread's principal id and correlation id onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        # Imported lazily: exceptions imports this module
        from ..context.principal_context import PrincipalContext
        from ..exceptions import get_correlation_id

        principal_id = PrincipalContext.get_current_principal_id()
        if principal_id:
            record.principal_id = principal_id

        correlation_id = get_correlation_id()
        if correlation_id:
            record.correlation_id = correlation_id

        return True


class AzureQueueHandler(logging.Handler):
    """
    Buffers structured log entries and sends them to an Azure Storage Queue.

    A batch goes out once ``batch_size`` entries are buffered, and on
    ``flush()`` or ``close()``. Without a client or connection string the
    handler only buffers.
    """

    def __init__(
        self,
        queue_name: str = "crosspost-logs",
        connection_string: Optional[str] = None,
        batch_size: int = 10,
        queue_client: Optional[QueueClient] = None,
    ):
        super().__init__()
        self.queue_name = queue_name
        self.connection_string = connection_string or os.getenv("AzureWebJobsStorage")
        self.batch_size = batch_size
        self.log_buffer: List[Dict[str, Any]] = []
        self._queue_client = queue_client

        if self._queue_client is None:
            if self.connection_string:
                self._queue_client = QueueClient.from_connection_string(
                    conn_str=self.connection_string, queue_name=self.queue_name
                )
                self._create_queue()
            else:
                sys.stderr.write("Azure Storage connection string not provided\n")

    def _create_queue(self) -> None:
        try:
            self._queue_client.create_queue()
        except ResourceExistsError:
            pass
        except Exception as e:
            # A logging backend outage must not take the service down
            sys.stderr.write(f"Failed to create log queue '{self.queue_name}': {e}\n")

    def build_entry(self, record: logging.LogRecord) -> Dict[str, Any]:
        """Convert a LogRecord into a JSON-serializable dict."""
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        for field in ("principal_id", "correlation_id"):
            value = getattr(record, field, None)
            if value:
                entry[field] = value

        context = redact(
            {
                key: value
                for key, value in record.__dict__.items()
                if key not in _STANDARD_RECORD_FIELDS and not key.startswith("_")
            }
        )
        if context:
            entry["context"] = context

        if record.exc_info and record.exc_info[0]:
            exc_type, exc_value, _ = record.exc_info
            entry["exception"] = {
                "type": exc_type.__name__,
                "message": str(exc_value),
                "traceback": [
                    line.rstrip() for line in traceback.format_exception(*record.exc_info)
                ],
            }
        return entry

    def emit(self, record: logging.LogRecord) -> None:
        try:
            entry = self.build_entry(record)
        except Exception:
            self.handleError(record)
            return

        self.acquire()
        try:
            self.log_buffer.append(entry)
            full = len(self.log_buffer) >= self.batch_size
        finally:
            self.release()
        if full:
            self.flush()

    def flush(self) -> None:
        if self._queue_client is None:
            return

        self.acquire()
        try:
            pending, self.log_buffer = self.log_buffer, []
        finally:
            self.release()

        # One message per entry so a rejected entry does not lose the batch
        for entry in pending:
            try:
                self._queue_client.send_message(dumps(entry))
            except Exception as e:
                sys.stderr.write(f"Error sending log entry to '{self.queue_name}': {e}\n")

    def close(self) -> None:
        self.flush()
        super().close()


def configure_logging(
    service_name: str,
    log_level: Optional[Union[int, str]] = None,
    enable_queue: Optional[bool] = None,
    queue_name: Optional[str] = None,
    queue_batch_size: int = 10,
    connection_string: Optional[str] = None,
) -> ContextAwareLogger:
    """
    Install console (and optionally queue) handlers on ``crosspost.<service_name>``.

    Unset arguments fall back to ``AppConfig.logging`` and
    ``AppConfig.features.enable_logs_queue``. Reconfiguring replaces the
    handlers installed by a previous call.

    Returns:
        The configured logger; ``get_logger()`` returns it from now on
    """
    global _service_logger

    app_config = get_config()
    level = _to_level(log_level if log_level is not None else app_config.logging.level)
    if enable_queue is None:
        enable_queue = app_config.features.enable_logs_queue
    if connection_string is None:
        connection_string = app_config.logging.queue_connection_string
    queue_name = queue_name or app_config.logging.queue_name

    logger = logging.getLogger(f"crosspost.{service_name}")
    logger.setLevel(level)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    context_filter = PrincipalContextFilter()

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    console.setFormatter(logging.Formatter("%(message)s"))
    console.addFilter(context_filter)
    logger.addHandler(console)

    if enable_queue:
        queue_handler = AzureQueueHandler(
            queue_name=queue_name, connection_string=connection_string, batch_size=queue_batch_size
        )
        queue_handler.setLevel(level)
        queue_handler.addFilter(context_filter)
        logger.addHandler(queue_handler)

    _service_logger = ContextAwareLogger(logger)
    _service_logger.info(
        "Logger configured",
        extra={
            "service": service_name,
            "queue_logging": enable_queue,
            "queue_name": queue_name if enable_queue else None,
        },
    )
    return _service_logger


def get_logger(log_level: Optional[Union[int, str]] = None) -> ContextAwareLogger:
    """The configured service logger, or a wrapped root logger before configuration."""
    if _service_logger is not None:
        return _service_logger

    logger = logging.getLogger()
    logger.setLevel(_to_level(log_level if log_level is not None else get_config().logging.level))
    return ContextAwareLogger(logger)


def reset_logging() -> None:
    """Forget the configured logger so ``get_logger`` falls back to the root logger."""
    global _service_logger
    _service_logger = None
