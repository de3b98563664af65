"""Service mode: background job execution sharing one controlled application."""

import logging
import threading

from composer_automation.config import Configuration
from composer_automation.core.controller import ProcessController
from composer_automation.core.events import PROGRESS_UPDATE, STATUS_CHANGED
from composer_automation.core.jobs import Job, JobRegistry
from composer_automation.core.orchestrator import Orchestrator
from composer_automation.models import AutomationResult, AutomationStatus, Idea


class AutomationService:
    """Accepts ideas as jobs and runs them one at a time on background threads.

    The controlled application is launched once by ``start()`` and shared by
    every job. Runs are serialised because they share the working directory
    and its sentinel files.
    """

    def __init__(
        self,
        config: Configuration,
        controller: ProcessController | None = None,
        logger: logging.Logger | None = None,
        orchestrator_factory=None,
    ):
        self.config = config
        self.logger = logger or logging.getLogger(__name__)
        self.controller = controller or ProcessController.from_config(config, self.logger)
        self.orchestrator = Orchestrator(config, controller=self.controller, logger=self.logger)
        self.jobs = JobRegistry(retention=config.job_retention)

        self._orchestrator_factory = orchestrator_factory or self._new_orchestrator
        self._run_lock = threading.Lock()
        self._threads: dict[str, threading.Thread] = {}
        self._threads_lock = threading.Lock()

    def start(self):
        self.orchestrator.start_service()
        self.logger.info("Automation service started")

    def stop(self):
        self.orchestrator.stop_service()
        self.logger.info("Automation service stopped")

    # ── Jobs ──────────────────────────────────────────────────────────────────

    def submit(self, idea: Idea | dict) -> str:
        """Register a job for ``idea`` and start it in the background. Returns the job ID."""
        job = self.jobs.create()
        thread = threading.Thread(
            target=self._run_job, args=(job.id, idea), name=f"job-{job.id}", daemon=True
        )
        with self._threads_lock:
            self._threads[job.id] = thread
        thread.start()
        self.logger.info("Accepted job %s", job.id)
        return job.id

    def get_job(self, job_id: str) -> Job | None:
        return self.jobs.get(job_id)

    def list_jobs(self) -> list[Job]:
        return self.jobs.list()

    def wait(self, job_id: str, timeout: float | None = None) -> Job | None:
        """Block until the job's thread finishes (or ``timeout`` passes)."""
        with self._threads_lock:
            thread = self._threads.get(job_id)
        if thread is not None:
            thread.join(timeout)
        return self.jobs.get(job_id)

    def _run_job(self, job_id: str, idea: Idea | dict):
        try:
            with self._run_lock:
                orchestrator = self._orchestrator_factory()
                orchestrator.subscribe(
                    STATUS_CHANGED, lambda status: self.jobs.update(job_id, status=status)
                )
                orchestrator.subscribe(
                    PROGRESS_UPDATE,
                    lambda update: self.jobs.update(
                        job_id, progress=update.percentage, message=update.message
                    ),
                )
                result = orchestrator.run(idea)
                self.jobs.update(job_id, status=result.status, result=result)
            self.logger.info("Job %s finished: %s", job_id, result.status.value)
            self._notify(job_id, _idea_name(idea), result)
        except Exception as e:
            self.logger.exception("Error processing job %s", job_id)
            self.jobs.update(job_id, status=AutomationStatus.FAILED, message=str(e))
        finally:
            with self._threads_lock:
                self._threads.pop(job_id, None)

    def _new_orchestrator(self) -> Orchestrator:
        return Orchestrator(self.config, controller=self.controller, logger=self.logger)

    def _notify(self, job_id: str, name: str, result: AutomationResult):
        """Send a Slack notification for a finished job (best-effort)."""
        if not (self.config.slack_bot_token and self.config.slack_channel):
            return
        try:
            from composer_automation.integrations.slack import (
                format_run_notification,
                format_run_summary,
                send_message,
            )

            send_message(
                self.config.slack_bot_token,
                self.config.slack_channel,
                format_run_summary(name, result),
                blocks=format_run_notification(name, result, job_id),
            )
        except Exception:
            self.logger.exception("Failed to send Slack notification for job %s", job_id)


def _idea_name(idea) -> str:
    if isinstance(idea, Idea):
        return idea.name
    if isinstance(idea, dict):
        return str(idea.get("name") or "unnamed idea")
    return "unnamed idea"
