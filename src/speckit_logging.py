"""Logging and observability for the Spec-kit dashboard.

Everything logs under the ``speckit`` logger. Sync and watcher code
publishes named events (``feature_synced``, ``file_changed``, ...) through
``observability_hooks`` so a host can react to them, and timed operations
leave duration metrics in ``performance_monitor``.
"""

from __future__ import annotations

import json
import threading
import time
import logging as std_logging
from contextlib import contextmanager
from datetime import datetime
from functools import wraps
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from .models import utc_timestamp

CONSOLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(module)s:%(funcName)s:%(lineno)d - %(message)s"


def setup_logging(log_level: Union[str, int] = std_logging.INFO, log_file: Optional[Path] = None) -> None:
    """Send ``speckit.*`` records to stderr and, when ``log_file`` is set, to a JSON-lines file."""

    logger = std_logging.getLogger("speckit")
    logger.setLevel(log_level)
    logger.handlers.clear()

    console_handler = std_logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(std_logging.Formatter(fmt=CONSOLE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    logger.addHandler(console_handler)

    if log_file:
        file_handler = std_logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(std_logging.DEBUG)
        file_handler.setFormatter(JsonFormatter())
        logger.addHandler(file_handler)

    logger.info("Spec-kit dashboard logging initialized")


class JsonFormatter(std_logging.Formatter):
    """One JSON object per record; ``extra_fields`` are merged in at the top level."""

    def format(self, record: std_logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        if hasattr(record, "extra_fields"):
            entry.update(record.extra_fields)
        return json.dumps(entry, default=str)


class PerformanceMonitor:
    """Duration metrics keyed by name.

    Written from the server thread and from watcher timer threads.
    """

    def __init__(self):
        self.metrics: Dict[str, List[Dict[str, Any]]] = {}
        self._lock = threading.Lock()

    def record_metric(self, name: str, value: Any, tags: Optional[Dict[str, str]] = None) -> None:
        metric = {"timestamp": utc_timestamp(), "name": name, "value": value, "tags": tags or {}}
        with self._lock:
            self.metrics.setdefault(name, []).append(metric)
        std_logging.getLogger("speckit.performance").debug(
            f"Metric recorded: {name}={value}", extra={"extra_fields": metric}
        )

    def get_metrics(self, name: Optional[str] = None) -> Dict[str, List[Dict[str, Any]]]:
        with self._lock:
            if name:
                return {name: list(self.metrics.get(name, []))}
            return {key: list(values) for key, values in self.metrics.items()}

    def last(self, name: str) -> Optional[Dict[str, Any]]:
        """Most recent metric recorded under ``name``."""
        with self._lock:
            values = self.metrics.get(name)
            return values[-1] if values else None

    def reset(self) -> None:
        with self._lock:
            self.metrics.clear()


performance_monitor = PerformanceMonitor()


@contextmanager
def log_operation(operation_name: str, record_metric: bool = False, **extra_fields):
    """Log the start, end and duration of a block.

    With ``record_metric`` the duration is also kept as
    ``<operation_name>_duration``, tagged with the outcome.
    """
    logger = std_logging.getLogger("speckit.operations")
    fields = {"operation": operation_name, **extra_fields}
    start_time = time.time()
    logger.debug(f"Starting operation: {operation_name}", extra={"extra_fields": {**fields, "status": "started"}})

    try:
        yield
    except Exception as e:
        duration = time.time() - start_time
        if record_metric:
            performance_monitor.record_metric(
                f"{operation_name}_duration", duration, {"status": "error", "error_type": type(e).__name__}
            )
        logger.error(
            f"Failed operation: {operation_name} after {duration:.3f}s - {e}",
            extra={"extra_fields": {
                **fields,
                "status": "failed",
                "duration": duration,
                "error_type": type(e).__name__,
                "error_message": str(e),
            }},
            exc_info=True,
        )
        raise

    duration = time.time() - start_time
    if record_metric:
        performance_monitor.record_metric(f"{operation_name}_duration", duration, {"status": "success"})
    logger.debug(
        f"Completed operation: {operation_name} in {duration:.3f}s",
        extra={"extra_fields": {**fields, "status": "completed", "duration": duration}},
    )


def log_performance(operation_name: str):
    """Decorator form of ``log_operation`` that always records the duration metric."""
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            with log_operation(operation_name, record_metric=True):
                return func(*args, **kwargs)
        return wrapper
    return decorator


class ObservabilityHooks:
    """Callbacks subscribed to named dashboard events."""

    def __init__(self):
        self.hooks: Dict[str, List[Callable[..., Any]]] = {}
        self.logger = std_logging.getLogger("speckit.observability")

    def register_hook(self, event_type: str, callback: Callable[..., Any]) -> None:
        self.hooks.setdefault(event_type, []).append(callback)
        self.logger.debug(f"Registered hook for event: {event_type}")

    def unregister_hook(self, event_type: str, callback: Callable[..., Any]) -> None:
        """Remove a previously registered callback; unknown callbacks are ignored."""
        callbacks = self.hooks.get(event_type, [])
        if callback in callbacks:
            callbacks.remove(callback)

    def trigger_hooks(self, event_type: str, **data) -> None:
        """Call every hook for ``event_type``. A failing hook is logged and skipped."""
        for hook in list(self.hooks.get(event_type, ())):
            try:
                hook(**data)
            except Exception as e:
                self.logger.error(f"Hook failed for event {event_type}: {e}")

    def publish_event(self, event_type: str, feature_id: Optional[str] = None, **data) -> None:
        """Log ``event_type`` with a timestamp, then hand the payload to its hooks."""
        payload = {"timestamp": utc_timestamp(), "feature_id": feature_id, **data}
        self.logger.info(f"Event: {event_type}", extra={"extra_fields": {"event_type": event_type, **payload}})
        self.trigger_hooks(event_type, **payload)


observability_hooks = ObservabilityHooks()


def log_error_with_context(error: Exception, context: Dict[str, Any], **extra_fields):
    """Log ``error`` with the traceback and a structured ``context`` dict."""
    std_logging.getLogger("speckit.errors").error(
        f"Error in {context.get('operation', 'unknown operation')}: {error}",
        extra={"extra_fields": {
            "timestamp": utc_timestamp(),
            "error_type": type(error).__name__,
            "error_message": str(error),
            "context": context,
            **extra_fields,
        }},
        exc_info=True,
    )


def log_feature_sync(feature_id: str, *, task_count: int, entity_count: int, **extra_fields):
    observability_hooks.publish_event(
        "feature_synced", feature_id=feature_id, task_count=task_count, entity_count=entity_count, **extra_fields
    )


def log_feature_sync_failure(feature_id: str, error: str, **extra_fields):
    observability_hooks.publish_event("feature_sync_failed", feature_id=feature_id, error=error, **extra_fields)


def log_project_sync(project_id: int, *, synced: int, error_count: int, **extra_fields):
    observability_hooks.publish_event(
        "project_synced", project_id=project_id, synced=synced, error_count=error_count, **extra_fields
    )


def log_file_change(event_type: str, file_path: str, feature_id: Optional[int] = None):
    """Publish a debounced watcher change; the feature id is zero padded like folder names."""
    observability_hooks.publish_event(
        "file_changed",
        feature_id=None if feature_id is None else f"{feature_id:03d}",
        change_type=event_type,
        file_path=file_path,
    )


def log_watcher_event(event_type: str, **extra_fields):
    """Publish a watcher lifecycle event as ``watcher_<type>`` (started, stopped, error)."""
    observability_hooks.publish_event(f"watcher_{event_type.lower()}", **extra_fields)
