"""Unit tests for the debounced file watcher."""

import threading
import time
from unittest.mock import MagicMock

import pytest
from watchdog.events import (
    DirModifiedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
)

from src.file_watcher import FileWatcherService, _WatchdogAdapter, extract_feature_id, should_process


class FakeObserver:
    """Stands in for a watchdog Observer without touching the filesystem."""

    def __init__(self):
        self.scheduled = []
        self.started = False
        self.stopped = False

    def schedule(self, handler, path, recursive=False):
        self.scheduled.append((path, recursive))

    def start(self):
        self.started = True

    def stop(self):
        self.stopped = True

    def join(self, timeout=None):
        pass


class Recorder:
    """Collects emitted events and signals when one arrives."""

    def __init__(self):
        self.events = []
        self.arrived = threading.Event()

    def __call__(self, event):
        self.events.append(event)
        self.arrived.set()


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def observers():
    return []


@pytest.fixture
def make_watcher(recorder, observers):
    created = []

    def factory():
        observer = FakeObserver()
        observers.append(observer)
        return observer

    def _make(debounce_ms=30, on_error=None, on_change=None):
        watcher = FileWatcherService(
            on_change or recorder, on_error=on_error, debounce_ms=debounce_ms, observer_factory=factory
        )
        created.append(watcher)
        return watcher

    yield _make
    for watcher in created:
        watcher.stop()


def settle(debounce_ms=30):
    time.sleep(debounce_ms / 1000.0 * 4)


class TestPathHelpers:
    """Feature id extraction and path filtering."""

    @pytest.mark.parametrize(
        "path, expected",
        [
            ("/repo/specs/001-user-auth/spec.md", 1),
            ("/repo/specs/042-dark-mode/checklists/requirements.md", 42),
            ("C:\\repo\\specs\\007-login\\tasks.md", 7),
            ("/repo/.specify/memory/constitution.md", None),
            ("/repo/specs/README.md", None),
            ("/repo/specs/notes/spec.md", None),
        ],
    )
    def test_extract_feature_id(self, path, expected):
        """Test feature id extraction from paths."""
        assert extract_feature_id(path) == expected

    @pytest.mark.parametrize(
        "path, expected",
        [
            ("/repo/specs/001-a/spec.md", True),
            ("/repo/.specify/memory/constitution.md", True),
            ("/repo/specs/001-a/notes.txt", False),
            ("/repo/specs/001-a/.draft.md", False),
            ("/repo/specs/.hidden/spec.md", False),
            ("/repo/specs/node_modules/pkg/README.md", False),
            ("/repo/.git/spec.md", False),
        ],
    )
    def test_should_process(self, path, expected):
        """Test markdown and ignored-directory filtering."""
        assert should_process(path, "/repo") is expected

    def test_should_process_only_checks_below_root(self):
        """Test that a project under a dot-directory is still watched."""
        assert should_process("/home/u/.projects/app/specs/001-a/spec.md", "/home/u/.projects/app") is True


class TestLifecycle:
    """start, stop and status."""

    def test_negative_debounce_rejected(self, recorder):
        """Test constructor validation."""
        with pytest.raises(ValueError, match="must not be negative"):
            FileWatcherService(recorder, debounce_ms=-1)

    def test_start_schedules_both_directories(self, make_watcher, observers, empty_project):
        """Test that specs/ and .specify/ are watched recursively."""
        watcher = make_watcher()

        assert watcher.start(empty_project) is True
        assert watcher.is_watching()
        assert watcher.get_watch_path() == str(empty_project)
        assert observers[0].started
        assert observers[0].scheduled == [
            (str(empty_project / "specs"), True),
            (str(empty_project / ".specify"), True),
        ]

    def test_start_without_directories_fails(self, make_watcher, tmp_path):
        """Test that a folder with nothing to watch reports an error."""
        errors = []
        watcher = make_watcher(on_error=errors.append)

        assert watcher.start(tmp_path) is False
        assert not watcher.is_watching()
        assert isinstance(errors[0], FileNotFoundError)

    def test_start_failure_is_reported(self, recorder, empty_project):
        """Test that an observer that cannot start is stopped and reported via on_error."""
        observer = FakeObserver()
        observer.start = MagicMock(side_effect=OSError("inotify limit reached"))
        errors = []
        watcher = FileWatcherService(recorder, on_error=errors.append, observer_factory=lambda: observer)

        assert watcher.start(empty_project) is False
        assert str(errors[0]) == "inotify limit reached"
        assert observer.stopped is True
        assert not watcher.is_watching()

    def test_restart_releases_previous_observer(self, make_watcher, observers, empty_project):
        """Test that a second start stops the first watch."""
        watcher = make_watcher()
        watcher.start(empty_project)
        watcher.start(empty_project)

        assert observers[0].stopped is True
        assert observers[1].started is True
        assert watcher.is_watching()

    def test_stop_is_safe_when_idle(self, make_watcher):
        """Test stop on a watcher that never started."""
        watcher = make_watcher()
        watcher.stop()
        watcher.stop()

        assert watcher.get_watch_path() is None


class TestDebounce:
    """Per-path debouncing of events."""

    def test_burst_emits_once(self, make_watcher, recorder, empty_project):
        """Test that two changes inside the window give one event."""
        watcher = make_watcher()
        watcher.start(empty_project)
        path = str(empty_project / "specs" / "001-user-auth" / "spec.md")

        watcher._handle_event("change", path)
        watcher._handle_event("change", path)

        assert recorder.arrived.wait(2.0)
        settle()
        assert len(recorder.events) == 1
        assert recorder.events[0].event_type == "change"
        assert recorder.events[0].affected_feature_id == 1

    def test_last_event_type_wins(self, make_watcher, recorder, empty_project):
        """Test that the emitted event carries the latest type."""
        watcher = make_watcher()
        watcher.start(empty_project)
        path = str(empty_project / "specs" / "001-a" / "tasks.md")

        watcher._handle_event("add", path)
        watcher._handle_event("change", path)

        assert recorder.arrived.wait(2.0)
        assert recorder.events[0].event_type == "change"

    def test_paths_are_debounced_independently(self, make_watcher, recorder, empty_project):
        """Test that different paths each emit."""
        watcher = make_watcher()
        watcher.start(empty_project)

        watcher._handle_event("change", str(empty_project / "specs" / "001-a" / "spec.md"))
        watcher._handle_event("unlink", str(empty_project / ".specify" / "memory" / "constitution.md"))

        deadline = time.time() + 2.0
        while len(recorder.events) < 2 and time.time() < deadline:
            time.sleep(0.01)
        assert sorted((e.event_type, e.affected_feature_id) for e in recorder.events) == [
            ("change", 1),
            ("unlink", None),
        ]

    def test_ignored_paths_do_not_emit(self, make_watcher, recorder, empty_project):
        """Test that non-markdown files never schedule a timer."""
        watcher = make_watcher()
        watcher.start(empty_project)

        watcher._handle_event("change", str(empty_project / "specs" / "001-a" / "image.png"))

        assert watcher.pending_count() == 0

    def test_events_ignored_when_not_watching(self, make_watcher):
        """Test that an idle watcher drops events."""
        watcher = make_watcher()
        watcher._handle_event("change", "/repo/specs/001-a/spec.md")

        assert watcher.pending_count() == 0

    def test_stop_cancels_pending_events(self, make_watcher, recorder, empty_project):
        """Test that nothing is emitted after stop."""
        watcher = make_watcher(debounce_ms=100)
        watcher.start(empty_project)
        watcher._handle_event("change", str(empty_project / "specs" / "001-a" / "spec.md"))

        watcher.stop()
        settle(100)

        assert recorder.events == []

    def test_callback_errors_go_to_on_error(self, make_watcher, empty_project):
        """Test that a failing consumer is reported, not raised."""
        errors = []
        arrived = threading.Event()

        def on_change(event):
            raise RuntimeError("consumer failed")

        def on_error(error):
            errors.append(error)
            arrived.set()

        watcher = make_watcher(on_change=on_change, on_error=on_error)
        watcher.start(empty_project)
        watcher._handle_event("change", str(empty_project / "specs" / "001-a" / "spec.md"))

        assert arrived.wait(2.0)
        assert str(errors[0]) == "consumer failed"


class TestWatchdogAdapter:
    """Mapping of watchdog events to add/change/unlink."""

    def test_file_events(self):
        """Test created, modified, deleted and moved events."""
        watcher = MagicMock()
        adapter = _WatchdogAdapter(watcher)

        adapter.on_created(FileCreatedEvent("/p/specs/001-a/spec.md"))
        adapter.on_modified(FileModifiedEvent("/p/specs/001-a/spec.md"))
        adapter.on_deleted(FileDeletedEvent("/p/specs/001-a/plan.md"))
        adapter.on_moved(FileMovedEvent("/p/specs/001-a/old.md", "/p/specs/001-a/new.md"))

        assert [call.args for call in watcher._handle_event.call_args_list] == [
            ("add", "/p/specs/001-a/spec.md"),
            ("change", "/p/specs/001-a/spec.md"),
            ("unlink", "/p/specs/001-a/plan.md"),
            ("unlink", "/p/specs/001-a/old.md"),
            ("add", "/p/specs/001-a/new.md"),
        ]

    def test_directory_events_ignored(self):
        """Test that directory events are dropped."""
        watcher = MagicMock()
        _WatchdogAdapter(watcher).on_modified(DirModifiedEvent("/p/specs/001-a"))

        watcher._handle_event.assert_not_called()
