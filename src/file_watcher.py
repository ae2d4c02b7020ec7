"""Debounced watching of a project's specs/ and .specify/ markdown files."""

from __future__ import annotations

import logging
import os
import re
import threading
from pathlib import Path, PurePosixPath
from typing import Callable, Dict, List, Optional, Union

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .config import DEFAULT_DEBOUNCE_MS, SPECIFY_DIR_NAME, SPECS_DIR_NAME
from .models import FileChangeEvent
from .speckit_logging import log_file_change, log_watcher_event

logger = logging.getLogger("speckit.watcher")

_FEATURE_ID_PATTERN = re.compile(r"/specs/(\d+)-[^/]+/")
_IGNORED_DIRS = ("node_modules", ".git")
_STOP_TIMEOUT = 5.0


def extract_feature_id(file_path: str) -> Optional[int]:
    """Feature number of a path inside ``specs/NNN-slug/``, else None."""
    match = _FEATURE_ID_PATTERN.search(file_path.replace("\\", "/"))
    return int(match.group(1)) if match else None


def should_process(file_path: str, root: Optional[Union[str, Path]] = None) -> bool:
    """True for ``.md`` files outside dot-directories, node_modules and .git.

    Only the part of the path below ``root`` is inspected, so a project
    that itself lives under a dot-directory is still watched.
    """
    normalized = file_path.replace("\\", "/")
    if not normalized.endswith(".md"):
        return False

    path = PurePosixPath(normalized)
    if root is not None:
        try:
            path = path.relative_to(PurePosixPath(str(root).replace("\\", "/")))
        except ValueError:
            pass

    for part in path.parts:
        if part in _IGNORED_DIRS:
            return False
        if part.startswith(".") and part not in (SPECIFY_DIR_NAME, ".", ".."):
            return False
    return True


class _WatchdogAdapter(FileSystemEventHandler):
    """Translate watchdog events into add/change/unlink."""

    def __init__(self, watcher: "FileWatcherService"):
        self._watcher = watcher

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._watcher._handle_event("add", os.fsdecode(event.src_path))

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._watcher._handle_event("change", os.fsdecode(event.src_path))

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._watcher._handle_event("unlink", os.fsdecode(event.src_path))

    def on_moved(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._watcher._handle_event("unlink", os.fsdecode(event.src_path))
            self._watcher._handle_event("add", os.fsdecode(event.dest_path))


class FileWatcherService:
    """Watch ``specs/`` and ``.specify/`` and emit one event per quiet file.

    Every qualifying event restarts a per-path timer; the FileChangeEvent
    is emitted only when a path has been quiet for ``debounce_ms``. The
    watcher is either idle or watching exactly one project.
    """

    def __init__(
        self,
        on_change: Callable[[FileChangeEvent], None],
        on_error: Optional[Callable[[Exception], None]] = None,
        debounce_ms: int = DEFAULT_DEBOUNCE_MS,
        observer_factory: Callable[[], Observer] = Observer,
    ):
        if debounce_ms < 0:
            raise ValueError(f"debounce_ms must not be negative, got {debounce_ms}")
        self.on_change = on_change
        self.on_error = on_error
        self.debounce_ms = debounce_ms
        self._observer_factory = observer_factory
        self._observer: Optional[Observer] = None
        self._watch_path: Optional[str] = None
        self._timers: Dict[str, threading.Timer] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, project_path: Union[str, Path]) -> bool:
        """Start watching ``project_path``; returns False if nothing could be watched.

        A watcher that is already running is stopped first.
        """
        if self.is_watching():
            self.stop()

        root = Path(project_path).expanduser()
        observer = self._observer_factory()
        handler = _WatchdogAdapter(self)

        watched: List[str] = []
        for name in (SPECS_DIR_NAME, SPECIFY_DIR_NAME):
            target = root / name
            if not target.is_dir():
                logger.warning(f"Not watching missing directory: {target}")
                continue
            try:
                observer.schedule(handler, str(target), recursive=True)
            except OSError as e:
                self._report_error(e, path=str(target))
                continue
            watched.append(str(target))

        if not watched:
            self._report_error(FileNotFoundError(f"Nothing to watch under {root}"), path=str(root))
            return False

        try:
            observer.start()
        except Exception as e:
            # emitters started before the failure are still running
            observer.stop()
            self._report_error(e, path=str(root))
            return False

        with self._lock:
            self._observer = observer
            self._watch_path = str(root)
        log_watcher_event("started", watch_path=str(root), watched=watched, debounce_ms=self.debounce_ms)
        return True

    def stop(self) -> None:
        """Cancel pending timers and release the watch. Safe to call when idle."""
        with self._lock:
            for timer in self._timers.values():
                timer.cancel()
            self._timers.clear()
            observer, self._observer = self._observer, None
            watch_path, self._watch_path = self._watch_path, None

        if observer is None:
            return
        observer.stop()
        observer.join(timeout=_STOP_TIMEOUT)
        log_watcher_event("stopped", watch_path=watch_path)

    def is_watching(self) -> bool:
        return self._observer is not None

    def get_watch_path(self) -> Optional[str]:
        return self._watch_path

    def pending_count(self) -> int:
        """Number of paths waiting for their quiet window to end."""
        with self._lock:
            return len(self._timers)

    # ------------------------------------------------------------------
    # Event handling
    # ------------------------------------------------------------------

    def _handle_event(self, event_type: str, file_path: str) -> None:
        with self._lock:
            if self._observer is None or not should_process(file_path, self._watch_path):
                return

            pending = self._timers.pop(file_path, None)
            if pending is not None:
                pending.cancel()

            def fire() -> None:
                self._fire(event_type, file_path, timer)

            timer = threading.Timer(self.debounce_ms / 1000.0, fire)
            timer.daemon = True
            self._timers[file_path] = timer
            timer.start()

    def _fire(self, event_type: str, file_path: str, timer: threading.Timer) -> None:
        with self._lock:
            # a newer event for the same path replaced this timer
            if self._timers.get(file_path) is not timer:
                return
            del self._timers[file_path]

        event = FileChangeEvent(
            event_type=event_type,
            file_path=file_path,
            affected_feature_id=extract_feature_id(file_path),
        )
        log_file_change(event.event_type, event.file_path, event.affected_feature_id)
        try:
            self.on_change(event)
        except Exception as e:
            self._report_error(e, path=file_path)

    def _report_error(self, error: Exception, **context) -> None:
        logger.error(f"File watcher error: {error}", exc_info=error)
        log_watcher_event("error", error=str(error), error_type=type(error).__name__, **context)
        if self.on_error is not None:
            self.on_error(error)
