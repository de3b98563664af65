"""Filesystem change tracking for the working directory of a run."""

import logging
import os
import shutil
import threading
import time
from dataclasses import dataclass
from pathlib import Path

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from composer_automation.core.events import (
    ERROR,
    FILE_CREATED,
    FILE_DELETED,
    FILE_MODIFIED,
    EventChannel,
)

CREATED = "created"
MODIFIED = "modified"


@dataclass
class _Pending:
    kind: str
    signature: tuple[int, int]
    changed_at: float


def _signature(path: str) -> tuple[int, int] | None:
    try:
        st = os.stat(path)
    except OSError:
        return None
    return st.st_size, st.st_mtime_ns


class _WatchHandler(FileSystemEventHandler):
    """Translates watchdog events into tracker observations."""

    def __init__(self, tracker: "FileChangeTracker"):
        self.tracker = tracker

    def on_created(self, event):
        if not event.is_directory:
            self._guard(self.tracker._observe, event.src_path, CREATED)

    def on_modified(self, event):
        if not event.is_directory:
            self._guard(self.tracker._observe, event.src_path, MODIFIED)

    def on_deleted(self, event):
        self._guard(self.tracker._observe_delete, event.src_path)

    def on_moved(self, event):
        self._guard(self.tracker._observe_delete, event.src_path)
        if not event.is_directory:
            self._guard(self.tracker._observe, event.dest_path, CREATED)

    def _guard(self, fn, *args):
        try:
            fn(*args)
        except Exception as e:
            self.tracker._report_error(e)


class FileChangeTracker:
    """Watches a directory tree and records which files were created or modified.

    Rapid successive writes are debounced: a path is only recorded once its
    size and mtime have been unchanged for ``stability_window`` seconds.
    Hidden (dot-prefixed) files and directories are ignored.

    Watcher failures never raise mid-session; they are published on the
    ``error`` channel of ``events``.
    """

    def __init__(
        self,
        working_directory: str | Path,
        stability_window: float = 2.0,
        poll_interval: float = 0.1,
        logger: logging.Logger | None = None,
        events: EventChannel | None = None,
    ):
        self.working_directory = Path(working_directory).resolve()
        self.stability_window = stability_window
        self.poll_interval = poll_interval
        self.logger = logger or logging.getLogger(__name__)
        self.events = events or EventChannel(self.logger)

        self._lock = threading.Lock()
        self._created: set[str] = set()
        self._modified: set[str] = set()
        self._pending: dict[str, _Pending] = {}
        self._observer: Observer | None = None
        self._settler: threading.Thread | None = None
        self._stop_event = threading.Event()

        self.working_directory.mkdir(parents=True, exist_ok=True)

    @property
    def is_active(self) -> bool:
        return self._observer is not None

    @property
    def created_files(self) -> set[str]:
        with self._lock:
            return set(self._created)

    @property
    def modified_files(self) -> set[str]:
        with self._lock:
            return set(self._modified)

    # ── Session lifecycle ─────────────────────────────────────────────────────

    def start_monitoring(self):
        """Clear tracked sets and start watching. Returns once the watch is live."""
        if self._observer is not None:
            self.logger.warning("File system monitoring is already active")
            return

        self.logger.info("Starting file system monitoring in %s", self.working_directory)
        with self._lock:
            self._created.clear()
            self._modified.clear()
            self._pending.clear()

        observer = Observer()
        observer.schedule(_WatchHandler(self), str(self.working_directory), recursive=True)
        observer.start()
        self._observer = observer

        self._stop_event.clear()
        self._settler = threading.Thread(
            target=self._settle_loop, name="tracker-settle", daemon=True
        )
        self._settler.start()
        self.logger.info("File system monitoring active")

    def stop_monitoring(self):
        """Stop watching. Safe to call when not monitoring."""
        observer = self._observer
        if observer is None:
            self.logger.debug("File system monitoring is not active")
            return

        self._observer = None
        observer.stop()
        observer.join(timeout=5)

        self._stop_event.set()
        if self._settler is not None:
            self._settler.join(timeout=5)
            self._settler = None

        # Writes that had not yet settled are recorded as they stand now
        self._settle(force=True)
        self.logger.info("File system monitoring stopped")

    # ── Tracked-set mutations ─────────────────────────────────────────────────

    def on_create(self, path: str | Path):
        path = self._normalize(path)
        with self._lock:
            self._created.add(path)
        self._announce(CREATED, path)

    def on_modify(self, path: str | Path):
        path = self._normalize(path)
        with self._lock:
            self._modified.add(path)
        self._announce(MODIFIED, path)

    def on_delete(self, path: str | Path):
        """Forget ``path`` (and anything beneath it, for a deleted directory)."""
        path = self._normalize(path)
        prefix = path + os.sep
        with self._lock:
            for tracked in (self._created, self._modified):
                for p in [p for p in tracked if p == path or p.startswith(prefix)]:
                    tracked.discard(p)
            for p in [p for p in self._pending if p == path or p.startswith(prefix)]:
                del self._pending[p]
        self.logger.debug("File deleted: %s", path)
        self.events.publish(FILE_DELETED, path)

    # ── Snapshot ──────────────────────────────────────────────────────────────

    def materialize_project(self, name: str) -> Path:
        """Copy every tracked file into ``<working_directory>/<name>``.

        Relative paths are preserved. Not atomic: a failure part-way leaves
        the files copied so far in place.
        """
        if not name or Path(name).name != name or name in (".", ".."):
            raise ValueError(f"Invalid project name: {name!r}")

        target = self.working_directory / name
        target.mkdir(parents=True, exist_ok=True)
        self.logger.info("Organizing project structure for %s", name)

        with self._lock:
            paths = sorted(self._created | self._modified)

        copied = 0
        for path in paths:
            source = Path(path)
            try:
                relative = source.relative_to(self.working_directory)
            except ValueError:
                self.logger.warning("Skipping %s: outside %s", source, self.working_directory)
                continue
            if target in source.parents:
                continue  # already inside the snapshot directory

            destination = target / relative
            destination.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, destination)
            copied += 1
            self.logger.debug("Copied %s to %s", source, destination)

        self.logger.info("Project organized at %s (%d files copied)", target, copied)
        return target

    # ── Watcher plumbing ──────────────────────────────────────────────────────

    def _observe(self, path, kind: str):
        path = self._normalize(path)
        if self._is_ignored(path):
            return
        signature = _signature(path)
        if signature is None:
            return

        now = time.monotonic()
        with self._lock:
            pending = self._pending.get(path)
            if pending is None:
                self._pending[path] = _Pending(kind, signature, now)
            else:
                # a create followed by writes is still reported as a create
                pending.signature = signature
                pending.changed_at = now

        if self.stability_window <= 0:
            self._settle()

    def _observe_delete(self, path):
        path = self._normalize(path)
        if not self._is_ignored(path):
            self.on_delete(path)

    def _settle_loop(self):
        while not self._stop_event.wait(self.poll_interval):
            try:
                self._settle()
            except Exception as e:
                self._report_error(e)

    def _settle(self, force: bool = False):
        """Record pending paths whose size and mtime have stopped changing."""
        now = time.monotonic()
        due = []
        with self._lock:
            for path, pending in list(self._pending.items()):
                signature = _signature(path)
                if signature is None:
                    del self._pending[path]
                    continue
                if signature != pending.signature and not force:
                    pending.signature = signature
                    pending.changed_at = now
                    continue
                if force or now - pending.changed_at >= self.stability_window:
                    # set membership only changes under the lock
                    tracked = self._created if pending.kind == CREATED else self._modified
                    tracked.add(path)
                    due.append((path, pending.kind))
                    del self._pending[path]

        for path, kind in due:
            self._announce(kind, path)

    def _announce(self, kind: str, path: str):
        self.logger.debug("File %s: %s", kind, path)
        self.events.publish(FILE_CREATED if kind == CREATED else FILE_MODIFIED, path)

    def _report_error(self, error: Exception):
        self.logger.error("File system monitoring error: %s", error)
        self.events.publish(ERROR, error)

    def _is_ignored(self, path: str) -> bool:
        try:
            relative = Path(path).relative_to(self.working_directory)
        except ValueError:
            return True
        return any(part.startswith(".") for part in relative.parts)

    def _normalize(self, path) -> str:
        path = Path(os.fsdecode(path))
        if not path.is_absolute():
            path = self.working_directory / path
        return str(path.parent.resolve() / path.name)
