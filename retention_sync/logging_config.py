"""
Structured JSON logging for sync observability.

Provides structured logging with trace IDs for correlating logs across sync
stages, plus a context manager that times remote API calls.
"""

import json
import logging
import sys
import time
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime

# Context variables for trace correlation
trace_id_var: ContextVar[str | None] = ContextVar("trace_id", default=None)
stage_var: ContextVar[str | None] = ContextVar("stage", default=None)
folder_id_var: ContextVar[str | None] = ContextVar("folder_id", default=None)

# Extra record attributes copied into the JSON payload
_EXTRA_KEYS = [
    "event",
    "duration_ms",
    "items_processed",
    "items_succeeded",
    "items_failed",
    "items_total",
    "operation",
    "method",
    "endpoint",
    "status_code",
    "attempt",
    "job_id",
    "folder_id",
    "folder_name",
    "parent_id",
    "data_extension_id",
    "page",
    "pass_number",
    "unsaved_ids",
]


# -----------------------------------------------------------------------------
# JSON Formatter
# -----------------------------------------------------------------------------


class JSONFormatter(logging.Formatter):
    """
    Format log records as single-line JSON.

    Output format:
    {"timestamp": "...", "level": "INFO", "message": "...", "trace_id": "...", ...}
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # Add trace context if available
        trace_id = trace_id_var.get()
        if trace_id:
            log_data["trace_id"] = trace_id

        stage = stage_var.get()
        if stage:
            log_data["stage"] = stage

        folder_id = folder_id_var.get()
        if folder_id:
            log_data["folder_id"] = folder_id

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key in _EXTRA_KEYS:
            if hasattr(record, key):
                log_data[key] = getattr(record, key)

        return json.dumps(log_data, default=str)


def configure_logging(json_format: bool = True, level: str = "INFO") -> None:
    """
    Configure logging for production or local development.

    Args:
        json_format: If True, use JSON format. If False, use human-readable format.
        level: Log level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(getattr(logging, level.upper()))

    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))

    root_logger.addHandler(handler)

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)


# -----------------------------------------------------------------------------
# Context Managers
# -----------------------------------------------------------------------------


@contextmanager
def log_stage(stage: str, trace_id: str | None = None):
    """
    Context manager for stage-level logging.

    Logs stage start and end with duration, automatically tracks timing.

    Usage:
        with log_stage("persist_top_level", trace_id=run_id):
            # ... stage logic ...
    """
    if trace_id:
        trace_id_var.set(trace_id)
    token = stage_var.set(stage)

    start_time = time.time()
    logger = logging.getLogger("retention_sync.stage")

    logger.info(f"Stage {stage} started", extra={"event": "stage_start"})

    try:
        yield
        duration_ms = int((time.time() - start_time) * 1000)
        logger.info(
            f"Stage {stage} completed",
            extra={"event": "stage_complete", "duration_ms": duration_ms},
        )
    except Exception as e:
        duration_ms = int((time.time() - start_time) * 1000)
        logger.error(
            f"Stage {stage} failed: {e}",
            extra={"event": "stage_failed", "duration_ms": duration_ms},
            exc_info=True,
        )
        raise
    finally:
        stage_var.reset(token)


@contextmanager
def log_http_call(method: str, endpoint: str):
    """
    Context manager for remote API call instrumentation.

    Logs the call with timing; the caller fills in the status code.

    Usage:
        with log_http_call("GET", url) as metrics:
            response = client.get(url)
            metrics["status_code"] = response.status_code
    """
    start_time = time.time()
    logger = logging.getLogger("retention_sync.http")
    metrics: dict = {"status_code": None}

    try:
        yield metrics

        duration_ms = int((time.time() - start_time) * 1000)
        logger.debug(
            f"{method} {endpoint} -> {metrics['status_code']} ({duration_ms}ms)",
            extra={
                "event": "http_call_complete",
                "method": method,
                "endpoint": endpoint,
                "status_code": metrics["status_code"],
                "duration_ms": duration_ms,
            },
        )
    except Exception as e:
        duration_ms = int((time.time() - start_time) * 1000)
        logger.warning(
            f"{method} {endpoint} failed: {e}",
            extra={
                "event": "http_call_failed",
                "method": method,
                "endpoint": endpoint,
                "status_code": metrics["status_code"],
                "duration_ms": duration_ms,
            },
        )
        raise
