"""Deployment dispatch: framework detection, packaging and per-target publishing."""

import json
import logging
import re
import shlex
from dataclasses import dataclass
from pathlib import Path

from composer_automation.errors import (
    CommandError,
    DeploymentError,
    PackagingError,
    TargetNotImplementedError,
    UnsupportedTargetError,
)
from composer_automation.integrations.commands import run_command
from composer_automation.models import DeploymentSettings, DeploymentTarget

# Checked in order against the merged dependencies of package.json; first match wins.
FRAMEWORK_MARKERS: list[tuple[str, str, str]] = [
    ("next", "web", "nextjs"),
    ("react", "web", "react"),
    ("vue", "web", "vue"),
    ("@angular/core", "web", "angular"),
    ("angular", "web", "angular"),
    ("express", "api", "express"),
    ("@nestjs/core", "api", "nestjs"),
]

BUILD_FRAMEWORKS = {"nextjs", "react", "vue", "angular", "express", "nestjs"}

NETLIFY_PUBLISH_DIRS = {"nextjs": ".next", "vue": "dist", "angular": "dist"}

URL_PATTERNS = {
    DeploymentTarget.VERCEL: re.compile(r"https://[a-zA-Z0-9.-]+\.vercel\.app"),
    DeploymentTarget.NETLIFY: re.compile(r"https://[a-zA-Z0-9.-]+\.netlify\.app"),
}

CUSTOM_URL_PATTERN = re.compile(r"https://[^\s'\"<>]+")

# Targets without a real deployment routine. The URLs are not reachable.
PLACEHOLDER_URLS = {
    DeploymentTarget.AWS: "https://example-aws-deployment.com",
    DeploymentTarget.AZURE: "https://example-azure-deployment.com",
    DeploymentTarget.GCP: "https://example-gcp-deployment.com",
    DeploymentTarget.HEROKU: "https://example-heroku-deployment.com",
    DeploymentTarget.DIGITAL_OCEAN: "https://example-digitalocean-deployment.com",
    DeploymentTarget.GITHUB_PAGES: "https://example-github-pages-deployment.com",
    DeploymentTarget.CUSTOM: "https://example-custom-deployment.com",
}


@dataclass(frozen=True)
class AppInfo:
    type: str
    framework: str

    @property
    def needs_build(self) -> bool:
        return self.framework in BUILD_FRAMEWORKS


class DeploymentDispatcher:
    """Publishes a built project to one hosting target at a time.

    Only Vercel and Netlify are backed by real CLIs. The other known targets
    return placeholder URLs (with a warning) unless the ``strictTargets``
    option is set, in which case they raise TargetNotImplementedError.
    ``custom`` runs ``options.customDeployCommand`` when one is configured.

    No retries: every failure surfaces to the caller.
    """

    def __init__(
        self,
        settings: DeploymentSettings | None = None,
        logger: logging.Logger | None = None,
    ):
        self.settings = settings or DeploymentSettings()
        self.logger = logger or logging.getLogger(__name__)

    @property
    def strict_targets(self) -> bool:
        return bool(self.settings.options.get("strictTargets"))

    # ── Detection and packaging ───────────────────────────────────────────────

    def detect_application(self, project_dir: str | Path) -> AppInfo:
        """Infer application type and framework from the project's manifest files."""
        project_dir = Path(project_dir)
        manifest = project_dir / "package.json"

        if manifest.exists():
            dependencies = self._read_dependencies(manifest)
            for marker, app_type, framework in FRAMEWORK_MARKERS:
                if marker in dependencies:
                    return self._detected(AppInfo(app_type, framework))

        if (project_dir / "index.html").exists():
            return self._detected(AppInfo("web", "static"))

        return self._detected(AppInfo("web", "unknown"))

    def package(self, project_dir: str | Path, app_info: AppInfo):
        """Install dependencies and run the framework build. Raises PackagingError."""
        project_dir = Path(project_dir)
        if not (project_dir / "package.json").exists():
            self.logger.info("No package manifest in %s, skipping packaging", project_dir)
            return

        self.logger.info("Packaging application for deployment")
        try:
            run_command(["npm", "install"], cwd=project_dir)
            if app_info.needs_build:
                run_command(["npm", "run", "build"], cwd=project_dir)
        except CommandError as e:
            self.logger.error("Failed to package application: %s", e)
            raise PackagingError(f"Packaging failed: {e}") from e
        self.logger.info("Application packaged successfully")

    def prepare(self, project_dir: str | Path) -> AppInfo:
        """Detect and package in one step."""
        app_info = self.detect_application(project_dir)
        self.package(project_dir, app_info)
        return app_info

    # ── Deployment ────────────────────────────────────────────────────────────

    def deploy(self, project_dir: str | Path, target: str, app_info: AppInfo | None = None) -> str:
        """Deploy ``project_dir`` to ``target`` and return the public URL."""
        try:
            kind = DeploymentTarget.parse(target)
        except ValueError:
            raise UnsupportedTargetError(target) from None

        project_dir = Path(project_dir)
        if app_info is None:
            app_info = self.detect_application(project_dir)

        self.logger.info("Deploying to %s", kind.value)
        if kind is DeploymentTarget.VERCEL:
            url = self._deploy_with_cli(kind, ["vercel", "--prod"], project_dir)
        elif kind is DeploymentTarget.NETLIFY:
            publish_dir = NETLIFY_PUBLISH_DIRS.get(app_info.framework, "build")
            url = self._deploy_with_cli(
                kind, ["netlify", "deploy", "--dir", publish_dir, "--prod"], project_dir
            )
        elif kind is DeploymentTarget.CUSTOM and self.settings.options.get("customDeployCommand"):
            url = self._deploy_custom(project_dir)
        else:
            url = self._placeholder(kind)

        self.logger.info("Deployed to %s: %s", kind.value, url)
        return url

    def _deploy_with_cli(self, kind: DeploymentTarget, command: list[str], project_dir: Path) -> str:
        output = self._run_deploy_command(kind, command, project_dir)
        match = URL_PATTERNS[kind].search(output)
        if not match:
            raise DeploymentError(f"Could not extract deployment URL from {kind.value} output")
        return match.group(0)

    def _deploy_custom(self, project_dir: Path) -> str:
        command = self.settings.options["customDeployCommand"]
        if isinstance(command, str):
            command = shlex.split(command)
        output = self._run_deploy_command(DeploymentTarget.CUSTOM, list(command), project_dir)
        match = CUSTOM_URL_PATTERN.search(output)
        if not match:
            raise DeploymentError("Could not extract deployment URL from custom deploy output")
        return match.group(0)

    def _run_deploy_command(self, kind: DeploymentTarget, command: list[str], project_dir: Path) -> str:
        try:
            return run_command(command, cwd=project_dir, env=self.settings.credentials or None)
        except CommandError as e:
            raise DeploymentError(f"Deployment to {kind.value} failed: {e}") from e

    def _placeholder(self, kind: DeploymentTarget) -> str:
        if self.strict_targets:
            raise TargetNotImplementedError(kind.value)
        url = PLACEHOLDER_URLS[kind]
        self.logger.warning(
            "Deployment to %s is not implemented; returning placeholder URL %s", kind.value, url
        )
        return url

    # ── Helpers ───────────────────────────────────────────────────────────────

    def _read_dependencies(self, manifest: Path) -> dict:
        try:
            data = json.loads(manifest.read_text())
        except (OSError, json.JSONDecodeError) as e:
            self.logger.warning("Could not read %s: %s", manifest, e)
            return {}
        if not isinstance(data, dict):
            return {}
        merged = {}
        for key in ("dependencies", "devDependencies"):
            value = data.get(key)
            if isinstance(value, dict):
                merged.update(value)
            elif value is not None:
                self.logger.warning("Ignoring %s in %s: not an object", key, manifest)
        return merged

    def _detected(self, app_info: AppInfo) -> AppInfo:
        self.logger.info(
            "Detected application type: %s, framework: %s", app_info.type, app_info.framework
        )
        return app_info
