"""Tests for the file change tracker."""

import tempfile
from pathlib import Path

import pytest

from composer_automation.core.controller import wait_until
from composer_automation.core.events import ERROR, FILE_CREATED, FILE_DELETED
from composer_automation.core.tracker import CREATED, MODIFIED, FileChangeTracker


@pytest.fixture
def work_dir():
    with tempfile.TemporaryDirectory() as tmp:
        yield Path(tmp).resolve()


@pytest.fixture
def tracker(work_dir):
    t = FileChangeTracker(work_dir, stability_window=0, poll_interval=0.02)
    yield t
    t.stop_monitoring()


def _write(path: Path, text: str = "x") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    return path


class TestTrackedSets:
    def test_create_and_modify(self, tracker, work_dir):
        a = _write(work_dir / "a.txt")
        tracker.on_create(a)
        tracker.on_modify(a)
        assert str(a) in tracker.created_files
        assert str(a) in tracker.modified_files

    def test_delete_removes_from_both_sets(self, tracker, work_dir):
        a = _write(work_dir / "a.txt")
        tracker.on_create(a)
        tracker.on_modify(a)
        tracker.on_delete(a)
        assert tracker.created_files == set()
        assert tracker.modified_files == set()

    def test_deleted_directory_drops_children(self, tracker, work_dir):
        tracker.on_create(_write(work_dir / "src" / "a.js"))
        tracker.on_create(_write(work_dir / "src" / "b.js"))
        tracker.on_create(_write(work_dir / "srcs.txt"))
        tracker.on_delete(work_dir / "src")
        assert tracker.created_files == {str(work_dir / "srcs.txt")}

    def test_relative_paths_resolved_against_working_directory(self, tracker, work_dir):
        tracker.on_create("nested/file.txt")
        assert tracker.created_files == {str(work_dir / "nested" / "file.txt")}

    def test_events_published(self, tracker, work_dir):
        seen = []
        tracker.events.subscribe(FILE_CREATED, lambda p: seen.append(("created", p)))
        tracker.events.subscribe(FILE_DELETED, lambda p: seen.append(("deleted", p)))
        a = _write(work_dir / "a.txt")
        tracker.on_create(a)
        tracker.on_delete(a)
        assert seen == [("created", str(a)), ("deleted", str(a))]


class TestMaterialize:
    def test_copies_union_preserving_layout(self, tracker, work_dir):
        tracker.on_create(_write(work_dir / "package.json", "{}"))
        tracker.on_modify(_write(work_dir / "src" / "index.js", "console.log(1)"))

        target = tracker.materialize_project("demo")

        assert target == work_dir / "demo"
        assert (target / "package.json").read_text() == "{}"
        assert (target / "src" / "index.js").read_text() == "console.log(1)"

    def test_excludes_deleted_paths(self, tracker, work_dir):
        keep = _write(work_dir / "keep.txt")
        gone = _write(work_dir / "gone.txt")
        tracker.on_create(keep)
        tracker.on_create(gone)
        tracker.on_delete(gone)

        target = tracker.materialize_project("demo")

        assert (target / "keep.txt").exists()
        assert not (target / "gone.txt").exists()

    def test_reuses_existing_directory(self, tracker, work_dir):
        _write(work_dir / "demo" / "old.txt")
        tracker.on_create(_write(work_dir / "new.txt"))
        target = tracker.materialize_project("demo")
        assert (target / "old.txt").exists()
        assert (target / "new.txt").exists()

    def test_files_already_inside_target_are_left_alone(self, tracker, work_dir):
        inside = _write(work_dir / "demo" / "app.py", "print()")
        tracker.on_create(inside)
        target = tracker.materialize_project("demo")
        assert (target / "app.py").read_text() == "print()"
        assert not (target / "demo").exists()

    def test_missing_source_fails_midway(self, tracker, work_dir):
        tracker.on_create(_write(work_dir / "a.txt"))
        tracker.on_create(work_dir / "b.txt")  # never written
        with pytest.raises(FileNotFoundError):
            tracker.materialize_project("demo")
        assert (work_dir / "demo" / "a.txt").exists()

    @pytest.mark.parametrize("name", ["", "..", "a/b", "."])
    def test_rejects_bad_names(self, tracker, name):
        with pytest.raises(ValueError):
            tracker.materialize_project(name)


class TestMonitoring:
    def test_detects_new_files(self, tracker, work_dir):
        tracker.start_monitoring()
        path = _write(work_dir / "src" / "app.js", "let a")
        assert wait_until(lambda: str(path) in tracker.created_files, timeout=5.0)

    def test_ignores_hidden_entries(self, tracker, work_dir):
        tracker.start_monitoring()
        _write(work_dir / ".composer_prompt", "prompt")
        _write(work_dir / ".git" / "HEAD", "ref")
        visible = _write(work_dir / "visible.txt")
        assert wait_until(lambda: str(visible) in tracker.created_files, timeout=5.0)
        tracked = tracker.created_files | tracker.modified_files
        assert all("/." not in p for p in tracked)

    def test_detects_deletion(self, tracker, work_dir):
        tracker.start_monitoring()
        path = _write(work_dir / "temp.txt")
        assert wait_until(lambda: str(path) in tracker.created_files, timeout=5.0)
        path.unlink()
        assert wait_until(lambda: str(path) not in tracker.created_files, timeout=5.0)

    def test_start_clears_previous_session(self, tracker, work_dir):
        tracker.on_create(_write(work_dir / "old.txt"))
        tracker.start_monitoring()
        assert tracker.created_files == set()

    def test_start_twice_is_noop(self, tracker):
        tracker.start_monitoring()
        tracker.start_monitoring()
        assert tracker.is_active

    def test_stop_is_idempotent(self, tracker):
        tracker.stop_monitoring()
        tracker.start_monitoring()
        tracker.stop_monitoring()
        tracker.stop_monitoring()
        assert not tracker.is_active


class TestDebounce:
    def test_waits_for_quiet_period(self, work_dir):
        tracker = FileChangeTracker(work_dir, stability_window=0.5, poll_interval=0.02)
        tracker.start_monitoring()
        try:
            path = _write(work_dir / "build.js", "1")
            assert wait_until(lambda: str(path) in tracker._pending, timeout=5.0)
            assert str(path) not in tracker.created_files
            assert wait_until(lambda: str(path) in tracker.created_files, timeout=5.0)
        finally:
            tracker.stop_monitoring()

    def test_settled_path_recorded_before_announcement(self, tracker, work_dir):
        path = _write(work_dir / "app.js")
        recorded = []
        tracker.events.subscribe(FILE_CREATED, lambda p: recorded.append(p in tracker.created_files))
        tracker._observe(path, CREATED)
        assert recorded == [True]

    def test_delete_while_announcing_is_not_undone(self, tracker, work_dir):
        path = _write(work_dir / "app.js")
        tracker.events.subscribe(FILE_CREATED, tracker.on_delete)
        tracker._observe(path, CREATED)
        assert tracker.created_files == set()

    def test_delete_before_settle_drops_pending(self, work_dir):
        tracker = FileChangeTracker(work_dir, stability_window=60)
        path = _write(work_dir / "app.js")
        tracker._observe(path, MODIFIED)
        tracker.on_delete(path)
        tracker._settle(force=True)
        assert tracker.modified_files == set()

    def test_stop_flushes_pending(self, work_dir):
        tracker = FileChangeTracker(work_dir, stability_window=60, poll_interval=0.02)
        tracker.start_monitoring()
        path = _write(work_dir / "late.js", "1")
        assert wait_until(lambda: str(path) in tracker._pending, timeout=5.0)
        tracker.stop_monitoring()
        assert str(path) in tracker.created_files


class TestErrors:
    def test_errors_are_published_not_raised(self, tracker):
        errors = []
        tracker.events.subscribe(ERROR, errors.append)
        failure = OSError("inotify watch limit reached")
        tracker._report_error(failure)
        assert errors == [failure]
