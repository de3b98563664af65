"""Run orchestration: drives one idea from validation to deployment."""

import logging
import time
from datetime import datetime
from pathlib import Path

from composer_automation.config import Configuration
from composer_automation.core.controller import ProcessController
from composer_automation.core.deployment import AppInfo, DeploymentDispatcher
from composer_automation.core.events import ERROR, PROGRESS_UPDATE, STATUS_CHANGED, EventChannel
from composer_automation.core.ideas import build_prompt, parse_idea, slugify
from composer_automation.core.tracker import FileChangeTracker
from composer_automation.errors import AutomationError, ServiceModeError
from composer_automation.models import (
    STATUS_PROGRESS,
    AutomationResult,
    AutomationStatus,
    Idea,
    ProgressUpdate,
)

DEPLOY_PROGRESS_START = STATUS_PROGRESS[AutomationStatus.DEPLOYING]
DEPLOY_PROGRESS_SPAN = 10


class Orchestrator:
    """State machine sequencing a run through the canonical phases.

    Every exception raised by a phase is caught here and turned into a FAILED
    result; nothing escapes ``run()``. Deployment is best-effort per target.

    One run at a time per instance. Subscribers receive ``status_changed``
    (AutomationStatus), ``progress_update`` (ProgressUpdate) and ``error``
    (str) events, synchronously on the running thread.
    """

    def __init__(
        self,
        config: Configuration,
        controller: ProcessController | None = None,
        tracker: FileChangeTracker | None = None,
        dispatcher: DeploymentDispatcher | None = None,
        logger: logging.Logger | None = None,
    ):
        self.config = config
        self.logger = logger or logging.getLogger(__name__)
        self.controller = controller or ProcessController.from_config(config, self.logger)
        self.tracker = tracker or FileChangeTracker(
            config.working_directory,
            stability_window=config.stability_window,
            logger=self.logger,
        )
        self.dispatcher = dispatcher or DeploymentDispatcher(config.deployment_settings, self.logger)
        self.events = EventChannel(self.logger)

        self._status = AutomationStatus.IDLE
        self._percentage = 0.0
        self._logs: list[str] = []
        self._errors: list[str] = []
        self._deployment_urls: dict[str, str] = {}
        self._deployment_errors: dict[str, str] = {}
        self._project_path: str | None = None

        self.tracker.events.subscribe(ERROR, self._on_watch_error)

    @property
    def status(self) -> AutomationStatus:
        return self._status

    def subscribe(self, kind: str, handler):
        self.events.subscribe(kind, handler)

    # ── Run ───────────────────────────────────────────────────────────────────

    def run(self, idea: Idea | dict) -> AutomationResult:
        """Process one idea end to end and return the aggregated result."""
        started = time.monotonic()
        self._reset_run()
        launched = False

        try:
            self._update_status(AutomationStatus.INITIALIZING, "Initializing automation process")
            idea = parse_idea(idea, strict=True)

            self._update_status(AutomationStatus.PROCESSING_IDEA, f"Processing idea: {idea.title}")
            prompt = build_prompt(idea)

            self._update_status(AutomationStatus.LAUNCHING_PROCESS, "Launching Cursor application")
            self.tracker.start_monitoring()
            if not self.controller.is_running:
                self.controller.launch()
                launched = True

            self._update_status(AutomationStatus.INTERACTING, "Interacting with Cursor Composer")
            self.controller.activate()
            self.controller.send_input(prompt)

            self._update_status(AutomationStatus.MONITORING, "Monitoring Composer progress")
            if self.config.completion_timeout > 0:
                self.controller.wait_for_completion(self.config.completion_timeout)
            self.tracker.stop_monitoring()

            self._update_status(AutomationStatus.TESTING, "Organizing generated application")
            project_dir = self.tracker.materialize_project(slugify(idea.name) or "project")
            self._project_path = str(project_dir)

            targets = list(idea.deployment_targets) or list(self.config.deployment_settings.targets)
            app_info = self.dispatcher.prepare(project_dir) if targets else None

            if targets:
                self._update_status(
                    AutomationStatus.DEPLOYING, f"Deploying application to {len(targets)} target(s)"
                )
            else:
                self._update_status(AutomationStatus.DEPLOYING, "No deployment targets requested")
            self._deploy(project_dir, targets, app_info)

            self._update_status(
                AutomationStatus.COMPLETED, "Automation process completed successfully"
            )
        except Exception as e:
            self._handle_error(e)
        finally:
            self._cleanup(launched)

        return AutomationResult(
            status=self._status,
            deployment_urls=dict(self._deployment_urls),
            deployment_errors=dict(self._deployment_errors),
            errors=list(self._errors),
            logs=list(self._logs),
            project_path=self._project_path,
            duration=time.monotonic() - started,
        )

    def _deploy(self, project_dir: Path, targets: list[str], app_info: AppInfo | None):
        count = len(targets)
        for index, target in enumerate(targets):
            try:
                url = self.dispatcher.deploy(project_dir, target, app_info)
            except Exception as e:
                error = str(e) or type(e).__name__
                self._deployment_errors[target] = error
                self.logger.error("Failed to deploy to %s: %s", target, error)
                message = f"Failed to deploy to {target}: {error}"
            else:
                self._deployment_urls[target] = url
                message = f"Deployed to {target}: {url}"

            self._log(AutomationStatus.DEPLOYING.value, message)
            percentage = DEPLOY_PROGRESS_START + DEPLOY_PROGRESS_SPAN * (index + 1) / count
            self._emit_progress(AutomationStatus.DEPLOYING, message, percentage)

    def _cleanup(self, launched: bool):
        try:
            self.tracker.stop_monitoring()
        except Exception as e:
            self.logger.warning("Failed to stop file monitoring: %s", e)
            self._log("WARN", f"Failed to stop file monitoring: {e}")

        if launched:
            try:
                self.controller.close()
            except Exception as e:
                self.logger.warning("Failed to close Cursor: %s", e)
                self._log("WARN", f"Failed to close Cursor: {e}")

    # ── Service mode ──────────────────────────────────────────────────────────

    def start_service(self):
        """Launch the controlled application for the lifetime of the service."""
        if not self.config.service_mode:
            raise ServiceModeError("Cannot start service: serviceMode is disabled in configuration")

        self.logger.info("Starting automation service")
        self._set_status(AutomationStatus.INITIALIZING)
        try:
            self.controller.launch()
        except Exception:
            self._set_status(AutomationStatus.FAILED)
            raise
        self._set_status(AutomationStatus.IDLE)

    def stop_service(self):
        if not self.config.service_mode:
            raise ServiceModeError("Cannot stop service: serviceMode is disabled in configuration")

        self.logger.info("Stopping automation service")
        self._set_status(AutomationStatus.CANCELLED)
        try:
            self.controller.close()
        finally:
            self._set_status(AutomationStatus.IDLE)

    # ── Notifications ─────────────────────────────────────────────────────────

    def _reset_run(self):
        self._percentage = 0.0
        self._logs = []
        self._errors = []
        self._deployment_urls = {}
        self._deployment_errors = {}
        self._project_path = None

    def _set_status(self, status: AutomationStatus):
        self._status = status
        self.events.publish(STATUS_CHANGED, status)

    def _update_status(self, status: AutomationStatus, message: str):
        self.logger.info("Status: %s - %s", status.value, message)
        self._log(status.value, message)
        self._set_status(status)
        self._emit_progress(status, message, STATUS_PROGRESS[status])

    def _emit_progress(self, status: AutomationStatus, message: str, percentage: float):
        self._percentage = max(self._percentage, percentage)
        self.events.publish(
            PROGRESS_UPDATE, ProgressUpdate(status=status, message=message, percentage=self._percentage)
        )

    def _handle_error(self, error: Exception):
        message = str(error) or type(error).__name__
        if isinstance(error, AutomationError):
            self.logger.error("Automation failed: %s", message)
        else:
            self.logger.exception("Automation failed: %s", message)

        self._errors.append(message)
        self._log("ERROR", message)
        self.events.publish(ERROR, message)
        self._set_status(AutomationStatus.FAILED)
        self._emit_progress(AutomationStatus.FAILED, message, STATUS_PROGRESS[AutomationStatus.FAILED])

    def _on_watch_error(self, error: Exception):
        self._log("WARN", f"File watcher error: {error}")

    def _log(self, label: str, message: str):
        self._logs.append(f"{datetime.now().isoformat()} - {label} - {message}")
