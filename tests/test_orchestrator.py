"""Tests for the orchestrator state machine."""

import json
import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest

from composer_automation.config import Configuration
from composer_automation.core.deployment import DeploymentDispatcher
from composer_automation.core.events import ERROR, PROGRESS_UPDATE, STATUS_CHANGED
from composer_automation.core.ideas import build_prompt, parse_idea
from composer_automation.core.orchestrator import Orchestrator
from composer_automation.errors import (
    LaunchFailedError,
    PackagingError,
    ServiceModeError,
    TimeoutExceededError,
)
from composer_automation.models import AutomationStatus, DeploymentSettings

from fakes import FakeController, FakeDispatcher, FakeTracker

S = AutomationStatus


@pytest.fixture
def work_dir():
    with tempfile.TemporaryDirectory() as tmp:
        yield Path(tmp)


def _idea(**overrides) -> dict:
    data = {"name": "demo", "description": "test", "applicationType": "web", "features": ["login"]}
    data.update(overrides)
    return data


def _orchestrator(work_dir, controller=None, dispatcher=None, tracker=None, **config_overrides):
    config = Configuration(cursor_path="/nonexistent/cursor", working_directory=work_dir)
    config = config.with_overrides(**config_overrides)
    orch = Orchestrator(
        config,
        controller=controller or FakeController(),
        tracker=tracker or FakeTracker(work_dir),
        dispatcher=dispatcher or FakeDispatcher(),
    )
    orch.statuses = []
    orch.updates = []
    orch.errors = []
    orch.subscribe(STATUS_CHANGED, orch.statuses.append)
    orch.subscribe(PROGRESS_UPDATE, orch.updates.append)
    orch.subscribe(ERROR, orch.errors.append)
    return orch


class TestSuccessfulRun:
    def test_minimal_idea_completes(self, work_dir):
        orch = _orchestrator(work_dir)
        result = orch.run(_idea())

        assert result.status is S.COMPLETED
        assert result.deployment_urls == {}
        assert result.errors == []
        assert result.project_path == str(work_dir / "demo")
        assert orch.status is S.COMPLETED

    def test_canonical_status_sequence(self, work_dir):
        orch = _orchestrator(work_dir)
        orch.run(_idea())
        assert orch.statuses == [
            S.INITIALIZING, S.PROCESSING_IDEA, S.LAUNCHING_PROCESS, S.INTERACTING,
            S.MONITORING, S.TESTING, S.DEPLOYING, S.COMPLETED,
        ]

    def test_progress_non_decreasing_and_ends_at_100(self, work_dir):
        orch = _orchestrator(work_dir)
        orch.run(_idea(deploymentTarget=["vercel", "netlify"]))
        percentages = [u.percentage for u in orch.updates]
        assert percentages == sorted(percentages)
        assert percentages[-1] == 100
        assert percentages[:5] == [5, 10, 20, 30, 50]

    def test_per_target_progress(self, work_dir):
        orch = _orchestrator(work_dir)
        orch.run(_idea(deploymentTarget=["vercel", "netlify"]))
        deploy_updates = [u.percentage for u in orch.updates if u.status is S.DEPLOYING]
        assert deploy_updates == [85, 90, 95]

    def test_prompt_sent_after_activation(self, work_dir):
        controller = FakeController()
        orch = _orchestrator(work_dir, controller=controller)
        orch.run(_idea())
        assert controller.calls == ["launch", "activate", "send_input", "close"]
        assert controller.prompts == [build_prompt(parse_idea(_idea()))]

    def test_waits_for_completion_when_configured(self, work_dir):
        controller = FakeController()
        orch = _orchestrator(work_dir, controller=controller, completion_timeout=30.0)
        orch.run(_idea())
        assert ("wait_for_completion", 30.0) in controller.calls

    def test_monitoring_brackets_the_composer_phase(self, work_dir):
        orch = _orchestrator(work_dir)
        orch.run(_idea())
        assert orch.tracker.calls[:3] == ["start", "stop", ("materialize", "demo")]

    def test_leaves_running_application_open(self, work_dir):
        controller = FakeController(running=True)
        orch = _orchestrator(work_dir, controller=controller)
        orch.run(_idea())
        assert "launch" not in controller.calls
        assert "close" not in controller.calls

    def test_logs_recorded(self, work_dir):
        orch = _orchestrator(work_dir)
        result = orch.run(_idea())
        assert any(" - initializing - " in line for line in result.logs)
        assert any(" - completed - " in line for line in result.logs)


class TestDeployment:
    def test_urls_in_submitted_order(self, work_dir):
        orch = _orchestrator(work_dir)
        result = orch.run(_idea(deploymentTarget=["netlify", "vercel", "aws"]))
        assert list(result.deployment_urls) == ["netlify", "vercel", "aws"]

    def test_failing_target_does_not_stop_others(self, work_dir):
        dispatcher = FakeDispatcher(failures={"vercel": RuntimeError("quota exceeded")})
        orch = _orchestrator(work_dir, dispatcher=dispatcher)
        result = orch.run(_idea(deploymentTarget=["vercel", "netlify"]))

        assert result.status is S.COMPLETED
        assert dispatcher.deployed == ["vercel", "netlify"]
        assert result.deployment_urls == {"netlify": "https://netlify.example.test"}
        assert result.deployment_errors == {"vercel": "quota exceeded"}
        assert result.errors == []

    def test_placeholder_and_unsupported_targets(self, work_dir):
        orch = _orchestrator(work_dir, dispatcher=DeploymentDispatcher())
        result = orch.run(_idea(deploymentTarget=["aws", "moon-base"]))

        assert result.status is S.COMPLETED
        assert result.deployment_urls == {"aws": "https://example-aws-deployment.com"}
        assert "moon-base" not in result.deployment_urls
        assert "Unsupported deployment target" in result.deployment_errors["moon-base"]

    def test_malformed_manifest_still_deploys(self, work_dir):
        project = work_dir / "demo"
        project.mkdir()
        (project / "package.json").write_text(json.dumps({"dependencies": ["react"]}))
        orch = _orchestrator(work_dir, dispatcher=DeploymentDispatcher())
        with patch("composer_automation.core.deployment.run_command", return_value="") as run:
            result = orch.run(_idea(deploymentTarget=["aws"]))

        assert result.status is S.COMPLETED, result.errors
        assert result.deployment_urls == {"aws": "https://example-aws-deployment.com"}
        assert [c.args[0] for c in run.call_args_list] == [["npm", "install"]]

    def test_falls_back_to_configured_targets(self, work_dir):
        dispatcher = FakeDispatcher()
        orch = _orchestrator(
            work_dir,
            dispatcher=dispatcher,
            deployment_settings=DeploymentSettings(targets=("heroku",)),
        )
        result = orch.run(_idea())
        assert dispatcher.deployed == ["heroku"]
        assert list(result.deployment_urls) == ["heroku"]

    def test_no_packaging_without_targets(self, work_dir):
        dispatcher = FakeDispatcher()
        orch = _orchestrator(work_dir, dispatcher=dispatcher)
        orch.run(_idea())
        assert dispatcher.prepared == []

    def test_packaging_failure_is_fatal(self, work_dir):
        dispatcher = FakeDispatcher(prepare_error=PackagingError("Packaging failed: npm install"))
        orch = _orchestrator(work_dir, dispatcher=dispatcher)
        result = orch.run(_idea(deploymentTarget=["vercel"]))

        assert result.status is S.FAILED
        assert result.errors == ["Packaging failed: npm install"]
        assert dispatcher.deployed == []


class TestFailures:
    def test_missing_description(self, work_dir):
        controller = FakeController()
        orch = _orchestrator(work_dir, controller=controller)
        data = _idea()
        del data["description"]
        result = orch.run(data)

        assert result.status is S.FAILED
        assert len(result.errors) == 1
        assert "description" in result.errors[0]
        assert orch.statuses == [S.INITIALIZING, S.FAILED]
        assert controller.calls == []

    def test_strict_policy_requires_features(self, work_dir):
        result = _orchestrator(work_dir).run(_idea(features=[]))
        assert result.status is S.FAILED
        assert result.errors == ["At least one feature is required"]

    def test_launch_failure(self, work_dir):
        controller = FakeController(launch_error=LaunchFailedError("Cursor exited during startup"))
        orch = _orchestrator(work_dir, controller=controller)
        result = orch.run(_idea())

        assert result.status is S.FAILED
        assert result.errors == ["Cursor exited during startup"]
        assert orch.errors == ["Cursor exited during startup"]
        assert "close" not in controller.calls
        assert orch.tracker.calls[-1] == "stop"

    def test_cleanup_after_failure(self, work_dir):
        controller = FakeController(completion_error=TimeoutExceededError("composer completion", 1))
        orch = _orchestrator(work_dir, controller=controller, completion_timeout=1.0)
        result = orch.run(_idea())

        assert result.status is S.FAILED
        assert "Timed out after 1s" in result.errors[0]
        assert controller.calls[-1] == "close"

    def test_failed_run_never_has_empty_errors(self, work_dir):
        controller = FakeController(launch_error=RuntimeError())
        result = _orchestrator(work_dir, controller=controller).run(_idea())
        assert result.status is S.FAILED
        assert result.errors == ["RuntimeError"]

    def test_terminal_progress_on_failure(self, work_dir):
        controller = FakeController(launch_error=LaunchFailedError("boom"))
        orch = _orchestrator(work_dir, controller=controller)
        orch.run(_idea())
        last = orch.updates[-1]
        assert last.status is S.FAILED
        assert last.percentage == 100

    def test_watch_errors_during_run_do_not_abort(self, work_dir):
        tracker = FakeTracker(work_dir, watch_error=OSError("watch limit reached"))
        orch = _orchestrator(work_dir, tracker=tracker)
        result = orch.run(_idea())

        assert result.status is S.COMPLETED
        assert result.errors == []
        assert orch.errors == []
        assert any("File watcher error: watch limit reached" in line for line in result.logs)


class TestServiceMode:
    def test_start_requires_service_mode(self, work_dir):
        orch = _orchestrator(work_dir)
        with pytest.raises(ServiceModeError):
            orch.start_service()
        with pytest.raises(ServiceModeError):
            orch.stop_service()

    def test_start_and_stop(self, work_dir):
        controller = FakeController()
        orch = _orchestrator(work_dir, controller=controller, service_mode=True)

        orch.start_service()
        assert orch.statuses == [S.INITIALIZING, S.IDLE]
        assert controller.is_running

        orch.stop_service()
        assert orch.statuses[2:] == [S.CANCELLED, S.IDLE]
        assert not controller.is_running
        assert orch.status is S.IDLE

    def test_start_failure_propagates(self, work_dir):
        controller = FakeController(launch_error=LaunchFailedError("no display"))
        orch = _orchestrator(work_dir, controller=controller, service_mode=True)
        with pytest.raises(LaunchFailedError):
            orch.start_service()
        assert orch.status is S.FAILED
