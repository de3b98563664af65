"""Lifecycle management of the controlled application and sentinel-file signalling.

The controlled application exposes no programmatic API. Requests are written
as marker files into the shared working directory, where a companion watcher
script running next to the application picks them up.
"""

import logging
import subprocess
import threading
import time
from collections.abc import Callable
from pathlib import Path

from composer_automation.errors import (
    LaunchFailedError,
    NotFoundError,
    NotRunningError,
    TimeoutExceededError,
)

# Filenames shared with the companion watcher script. Do not rename.
ACTIVATE_SENTINEL = ".activate_composer"
PROMPT_SENTINEL = ".composer_prompt"
COMPLETED_SENTINEL = ".composer_completed"
READY_SENTINEL = ".cursor_ready"

ACTIVATION_PAYLOAD = "agent_mode"


def wait_until(
    predicate: Callable[[], bool],
    timeout: float,
    initial_interval: float = 0.05,
    max_interval: float = 1.0,
    factor: float = 2.0,
) -> bool:
    """Poll ``predicate`` with exponential backoff until it holds or ``timeout`` elapses.

    Returns the last value of the predicate.
    """
    deadline = time.monotonic() + timeout
    interval = initial_interval
    while True:
        if predicate():
            return True
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return False
        time.sleep(min(interval, remaining))
        interval = min(interval * factor, max_interval)


class ProcessController:
    """Launches, signals and stops one instance of the controlled application."""

    def __init__(
        self,
        executable: str | Path,
        working_directory: str | Path,
        launch_timeout: float = 5.0,
        activation_timeout: float = 3.0,
        input_timeout: float = 2.0,
        close_timeout: float = 5.0,
        poll_interval: float = 0.05,
        logger: logging.Logger | None = None,
    ):
        self.executable = Path(executable)
        self.working_directory = Path(working_directory)
        self.launch_timeout = launch_timeout
        self.activation_timeout = activation_timeout
        self.input_timeout = input_timeout
        self.close_timeout = close_timeout
        self.poll_interval = poll_interval
        self.logger = logger or logging.getLogger(__name__)

        self._lock = threading.Lock()
        self._process: subprocess.Popen | None = None

        self.working_directory.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_config(cls, config, logger: logging.Logger | None = None) -> "ProcessController":
        return cls(
            config.cursor_path,
            config.working_directory,
            launch_timeout=config.launch_timeout,
            activation_timeout=config.activation_timeout,
            input_timeout=config.input_timeout,
            close_timeout=config.close_timeout,
            logger=logger,
        )

    # ── Status ────────────────────────────────────────────────────────────────

    @property
    def is_running(self) -> bool:
        with self._lock:
            proc = self._process
        if proc is None:
            return False
        if proc.poll() is not None:
            self._reset(proc)
            return False
        return True

    @property
    def pid(self) -> int | None:
        with self._lock:
            return self._process.pid if self._process else None

    def sentinel_path(self, name: str) -> Path:
        return self.working_directory / name

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    def launch(self):
        """Start the application detached from this process and wait for it to settle."""
        if self.is_running:
            self.logger.warning("Controlled application is already running (PID %s)", self.pid)
            return

        if not self.executable.exists():
            raise NotFoundError(str(self.executable))

        self.logger.info("Launching %s", self.executable)
        self.sentinel_path(READY_SENTINEL).unlink(missing_ok=True)

        try:
            proc = subprocess.Popen(
                [str(self.executable), str(self.working_directory)],
                cwd=self.working_directory,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as e:
            raise LaunchFailedError(f"Failed to launch {self.executable}: {e}") from e

        with self._lock:
            self._process = proc
        threading.Thread(
            target=self._watch_exit, args=(proc,), name="controller-exit-watch", daemon=True
        ).start()

        ready_file = self.sentinel_path(READY_SENTINEL)
        signalled = wait_until(
            lambda: proc.poll() is not None or ready_file.exists(),
            self.launch_timeout,
            initial_interval=self.poll_interval,
        )

        if proc.poll() is not None:
            self._reset(proc)
            raise LaunchFailedError(
                f"{self.executable.name} exited during startup with code {proc.returncode}"
            )

        if signalled:
            self.logger.info("Controlled application reported ready (PID %s)", proc.pid)
        else:
            self.logger.info(
                "Controlled application settled after %gs (PID %s)", self.launch_timeout, proc.pid
            )

    def close(self):
        """Terminate gracefully, force-kill after ``close_timeout``."""
        with self._lock:
            proc = self._process
        if proc is None or proc.poll() is not None:
            self.logger.warning("Controlled application is not running")
            self._reset(proc)
            return

        self.logger.info("Closing controlled application (PID %s)", proc.pid)
        try:
            proc.terminate()
            try:
                proc.wait(timeout=self.close_timeout)
            except subprocess.TimeoutExpired:
                self.logger.warning(
                    "PID %s did not exit within %gs, killing", proc.pid, self.close_timeout
                )
                proc.kill()
                proc.wait()
        finally:
            self._reset(proc)
        self.logger.info("Controlled application closed")

    # ── Sentinel protocol ────────────────────────────────────────────────────

    def activate(self):
        """Ask the companion watcher to open the composer in agent mode."""
        self._require_running("activate composer")
        self._signal(ACTIVATE_SENTINEL, ACTIVATION_PAYLOAD, self.activation_timeout)
        self.logger.info("Composer activation requested")

    def send_input(self, text: str):
        """Hand a prompt to the composer."""
        self._require_running("send input")
        self.sentinel_path(COMPLETED_SENTINEL).unlink(missing_ok=True)
        self._signal(PROMPT_SENTINEL, text, self.input_timeout)
        self.logger.info("Prompt delivered to composer (%d chars)", len(text))

    def check_completion(self) -> bool:
        self._require_running("check completion")
        return self.sentinel_path(COMPLETED_SENTINEL).exists()

    def wait_for_completion(self, timeout: float):
        """Block until the completion sentinel appears. Raises TimeoutExceededError."""
        self._require_running("wait for completion")
        if not wait_until(self.check_completion, timeout, initial_interval=self.poll_interval):
            raise TimeoutExceededError("composer completion", timeout)
        self.logger.info("Composer reported completion")

    # ── Internals ─────────────────────────────────────────────────────────────

    def _signal(self, name: str, payload: str, timeout: float):
        """Write a sentinel and wait for the watcher to consume it, at most ``timeout``."""
        sentinel = self.sentinel_path(name)
        sentinel.write_text(payload)
        self.logger.debug("Wrote sentinel %s", sentinel)

        consumed = wait_until(
            lambda: not sentinel.exists(), timeout, initial_interval=self.poll_interval
        )
        if consumed:
            self.logger.debug("Sentinel %s acknowledged", name)
        else:
            self.logger.debug("No acknowledgement for %s after %gs", name, timeout)

    def _require_running(self, operation: str):
        if not self.is_running:
            raise NotRunningError(operation)

    def _watch_exit(self, proc: subprocess.Popen):
        code = proc.wait()
        with self._lock:
            current = self._process is proc
        if current:
            self.logger.info("Controlled application exited with code %s", code)
            self._reset(proc)

    def _reset(self, proc: subprocess.Popen | None):
        with self._lock:
            if proc is None or self._process is proc:
                self._process = None
