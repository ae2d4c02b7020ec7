"""Unit tests for dashboard logging and observability.

This module tests the logging infrastructure, performance monitoring,
observability hooks and the sync/watcher event helpers.
"""

import json
import logging
import sys
from unittest.mock import MagicMock, patch

import pytest

from src.speckit_logging import (
    JsonFormatter,
    ObservabilityHooks,
    PerformanceMonitor,
    log_error_with_context,
    log_feature_sync,
    log_feature_sync_failure,
    log_file_change,
    log_operation,
    log_performance,
    log_project_sync,
    log_watcher_event,
    observability_hooks,
    performance_monitor,
    setup_logging,
)


def make_record(level=logging.INFO, message="Test message", exc_info=None):
    return logging.getLogger("test").makeRecord("test", level, __file__, 1, message, (), exc_info)


@pytest.fixture
def clean_speckit_logger():
    logger = logging.getLogger("speckit")
    handlers, level = list(logger.handlers), logger.level
    yield logger
    for handler in logger.handlers:
        handler.close()
    logger.handlers[:] = handlers
    logger.setLevel(level)


@pytest.fixture
def captured_events():
    """Record every event published through the global hooks under test."""
    seen = []

    def hook(**data):
        seen.append(data)

    names = [
        "feature_synced",
        "feature_sync_failed",
        "project_synced",
        "file_changed",
        "watcher_started",
        "watcher_error",
    ]
    for name in names:
        observability_hooks.register_hook(name, hook)
    yield seen
    for name in names:
        observability_hooks.unregister_hook(name, hook)


class TestJsonFormatter:
    """Test cases for JsonFormatter."""

    def test_json_formatter_basic(self):
        """Test basic JSON formatting."""
        data = json.loads(JsonFormatter().format(make_record()))

        assert data["level"] == "INFO"
        assert data["logger"] == "test"
        assert data["message"] == "Test message"
        assert "timestamp" in data
        assert "module" in data
        assert "function" in data
        assert "line" in data

    def test_json_formatter_with_exception(self):
        """Test JSON formatting with exception info."""
        try:
            raise ValueError("Test exception")
        except ValueError:
            record = make_record(logging.ERROR, exc_info=sys.exc_info())

        data = json.loads(JsonFormatter().format(record))

        assert data["level"] == "ERROR"
        assert "ValueError" in data["exception"]

    def test_json_formatter_with_extra_fields(self):
        """Test JSON formatting with extra fields."""
        record = make_record()
        record.extra_fields = {"feature_id": "001", "task_count": 4}

        data = json.loads(JsonFormatter().format(record))

        assert data["feature_id"] == "001"
        assert data["task_count"] == 4


class TestPerformanceMonitor:
    """Test cases for PerformanceMonitor."""

    def test_record_metric(self):
        """Test recording a performance metric."""
        monitor = PerformanceMonitor()
        monitor.record_metric("sync_duration", 42, {"project": "demo"})

        metrics = monitor.get_metrics("sync_duration")

        assert metrics["sync_duration"][0]["value"] == 42
        assert metrics["sync_duration"][0]["tags"]["project"] == "demo"
        assert "timestamp" in metrics["sync_duration"][0]

    def test_get_all_metrics_and_reset(self):
        """Test getting all metrics, then clearing them."""
        monitor = PerformanceMonitor()
        monitor.record_metric("metric1", 1)
        monitor.record_metric("metric2", 2)
        monitor.record_metric("metric1", 3)

        all_metrics = monitor.get_metrics()
        assert [m["value"] for m in all_metrics["metric1"]] == [1, 3]
        assert len(all_metrics["metric2"]) == 1

        monitor.reset()
        assert monitor.get_metrics() == {}

    def test_last_metric(self):
        """Test that last returns the newest value or None."""
        monitor = PerformanceMonitor()
        assert monitor.last("sync_feature_by_path_duration") is None

        monitor.record_metric("sync_feature_by_path_duration", 0.2)
        monitor.record_metric("sync_feature_by_path_duration", 0.1)

        assert monitor.last("sync_feature_by_path_duration")["value"] == 0.1

    def test_log_operation_can_record_metric(self):
        """Test the opt-in duration metric of log_operation."""
        performance_monitor.reset()

        with log_operation("resync", record_metric=True, folder="001-auth"):
            pass

        assert performance_monitor.last("resync_duration")["tags"] == {"status": "success"}


class TestLogPerformance:
    """Test cases for the log_performance decorator."""

    def setup_method(self):
        performance_monitor.reset()

    def test_log_performance_decorator(self):
        """Test that a successful call records a success metric."""

        @log_performance("parse_feature")
        def parse():
            return "parsed"

        assert parse() == "parsed"
        metrics = performance_monitor.get_metrics("parse_feature_duration")["parse_feature_duration"]
        assert len(metrics) == 1
        assert metrics[0]["value"] >= 0
        assert metrics[0]["tags"]["status"] == "success"

    def test_log_performance_decorator_with_exception(self):
        """Test that failures are recorded and re-raised."""

        @log_performance("parse_feature")
        def parse():
            raise ValueError("bad markdown")

        with pytest.raises(ValueError):
            parse()

        metrics = performance_monitor.get_metrics("parse_feature_duration")["parse_feature_duration"]
        assert metrics[0]["tags"] == {"status": "error", "error_type": "ValueError"}


class TestLogOperation:
    """Test cases for the log_operation context manager."""

    def test_log_operation_success(self):
        """Test that a successful operation logs start and completion."""
        with patch("src.speckit_logging.std_logging.getLogger") as mock_get_logger:
            logger = MagicMock()
            mock_get_logger.return_value = logger

            with log_operation("sync_feature", folder="001-auth"):
                pass

            assert logger.debug.call_count == 2
            assert not logger.error.called
            assert logger.debug.call_args[1]["extra"]["extra_fields"]["folder"] == "001-auth"

    def test_log_operation_with_exception(self):
        """Test that failures are logged and re-raised."""
        with patch("src.speckit_logging.std_logging.getLogger") as mock_get_logger:
            logger = MagicMock()
            mock_get_logger.return_value = logger

            with pytest.raises(ValueError):
                with log_operation("sync_feature"):
                    raise ValueError("spec.md not found")

            assert logger.error.called
            assert "spec.md not found" in str(logger.error.call_args)


class TestObservabilityHooks:
    """Test cases for ObservabilityHooks."""

    def test_register_and_trigger_hooks(self):
        """Test registering and triggering hooks."""
        hooks = ObservabilityHooks()
        received = []
        hooks.register_hook("feature_synced", lambda **data: received.append(data))

        hooks.trigger_hooks("feature_synced", feature_id="001")

        assert received == [{"feature_id": "001"}]

    def test_unregister_hook(self):
        """Test that unregistered callbacks are no longer called."""
        hooks = ObservabilityHooks()
        callback = MagicMock()
        hooks.register_hook("file_changed", callback)
        hooks.unregister_hook("file_changed", callback)
        hooks.unregister_hook("file_changed", callback)

        hooks.trigger_hooks("file_changed", file_path="x.md")

        callback.assert_not_called()

    def test_publish_event_passes_data_to_hooks(self):
        """Test that hooks receive the event payload without the type."""
        hooks = ObservabilityHooks()
        callback = MagicMock()
        hooks.register_hook("project_synced", callback)

        hooks.publish_event("project_synced", feature_id=None, synced=3)

        kwargs = callback.call_args[1]
        assert kwargs["synced"] == 3
        assert "timestamp" in kwargs
        assert "event_type" not in kwargs

    def test_hook_failure_handling(self):
        """Test that hook failures do not propagate."""
        hooks = ObservabilityHooks()
        later = MagicMock()

        def failing_callback(**data):
            raise ValueError("Hook failed")

        hooks.register_hook("file_changed", failing_callback)
        hooks.register_hook("file_changed", later)

        hooks.trigger_hooks("file_changed", file_path="x.md")

        later.assert_called_once_with(file_path="x.md")


class TestEventHelpers:
    """Sync and watcher convenience functions."""

    def test_log_feature_sync(self, captured_events):
        """Test the feature_synced payload."""
        log_feature_sync("001", task_count=4, entity_count=2, folder="001-auth")

        event = captured_events[-1]
        assert (event["feature_id"], event["task_count"], event["entity_count"]) == ("001", 4, 2)
        assert event["folder"] == "001-auth"

    def test_log_feature_sync_failure(self, captured_events):
        """Test the feature_sync_failed payload."""
        log_feature_sync_failure("003-broken", "spec.md not found", project_id=1)

        assert captured_events[-1]["error"] == "spec.md not found"
        assert captured_events[-1]["project_id"] == 1

    def test_log_project_sync(self, captured_events):
        """Test the project_synced payload."""
        log_project_sync(1, synced=2, error_count=1)

        assert (captured_events[-1]["synced"], captured_events[-1]["error_count"]) == (2, 1)

    def test_log_file_change_formats_feature_number(self, captured_events):
        """Test that the feature id is zero padded and the type kept."""
        log_file_change("change", "/p/specs/001-a/spec.md", 1)
        log_file_change("unlink", "/p/.specify/memory/constitution.md")

        assert captured_events[-2]["feature_id"] == "001"
        assert captured_events[-2]["change_type"] == "change"
        assert captured_events[-1]["feature_id"] is None

    def test_log_watcher_event_prefix(self, captured_events):
        """Test that watcher events are published as watcher_<type>."""
        log_watcher_event("Started", watch_path="/p")
        log_watcher_event("error", error="boom")

        assert captured_events[-2]["watch_path"] == "/p"
        assert captured_events[-1]["error"] == "boom"

    def test_log_error_with_context(self):
        """Test log_error_with_context structure."""
        with patch("src.speckit_logging.std_logging.getLogger") as mock_get_logger:
            log_error_with_context(
                ValueError("Test error"),
                {"operation": "sync_feature_by_path", "project_id": 1},
                folder="001-auth",
            )

            call_args = mock_get_logger.return_value.error.call_args
            extra_fields = call_args[1]["extra"]["extra_fields"]
            assert "sync_feature_by_path" in call_args[0][0]
            assert extra_fields["context"]["project_id"] == 1
            assert extra_fields["folder"] == "001-auth"
            assert extra_fields["error_type"] == "ValueError"


class TestLoggingIntegration:
    """Integration tests for logging setup."""

    def test_setup_logging_writes_json_lines(self, tmp_path, clean_speckit_logger):
        """Test that the file handler writes one JSON object per line."""
        log_file = tmp_path / "dashboard.log"
        setup_logging(log_level=logging.DEBUG, log_file=log_file)

        logging.getLogger("speckit.sync").info("Synced 2 features")
        for handler in clean_speckit_logger.handlers:
            handler.flush()

        lines = log_file.read_text().strip().splitlines()
        messages = [json.loads(line)["message"] for line in lines]
        assert "Synced 2 features" in messages

    def test_end_to_end_event_reaches_log_file(self, tmp_path, clean_speckit_logger):
        """Test that published events and metrics are written to the log file."""
        log_file = tmp_path / "dashboard.log"
        setup_logging(log_level=logging.DEBUG, log_file=log_file)

        log_project_sync(7, synced=1, error_count=0)
        performance_monitor.record_metric("sync_project_features_duration", 0.5)
        for handler in clean_speckit_logger.handlers:
            handler.flush()

        content = log_file.read_text()
        assert "Event: project_synced" in content
        assert "Metric recorded: sync_project_features_duration=0.5" in content
