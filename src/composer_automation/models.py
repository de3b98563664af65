"""Data models for composer automation."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class ApplicationType(str, Enum):
    WEB = "web"
    MOBILE = "mobile"
    DESKTOP = "desktop"
    API = "api"
    CLI = "cli"
    LIBRARY = "library"
    OTHER = "other"

    @classmethod
    def parse(cls, value: str) -> "ApplicationType":
        """Parse a tag case-insensitively, accepting the legacy ``*_app`` names."""
        key = str(value).strip().lower()
        key = _APPLICATION_TYPE_ALIASES.get(key, key)
        return cls(key)


_APPLICATION_TYPE_ALIASES = {
    "web_app": "web",
    "mobile_app": "mobile",
    "desktop_app": "desktop",
    "cli_tool": "cli",
}


class DeploymentTarget(str, Enum):
    VERCEL = "vercel"
    NETLIFY = "netlify"
    AWS = "aws"
    AZURE = "azure"
    GCP = "gcp"
    HEROKU = "heroku"
    DIGITAL_OCEAN = "digital-ocean"
    GITHUB_PAGES = "github-pages"
    CUSTOM = "custom"

    @classmethod
    def parse(cls, value: str) -> "DeploymentTarget":
        """Parse an identifier; ``digital_ocean`` and ``DIGITAL-OCEAN`` both match."""
        return cls(normalize_target(value))


def normalize_target(value: str) -> str:
    return str(value).strip().lower().replace("_", "-")


class LogLevel(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"

    @classmethod
    def parse(cls, value: str) -> "LogLevel":
        key = str(value).strip().lower()
        if key == "warning":
            key = "warn"
        return cls(key)

    def to_logging(self) -> str:
        return "WARNING" if self is LogLevel.WARN else self.name


class AutomationStatus(str, Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    PROCESSING_IDEA = "processing_idea"
    LAUNCHING_PROCESS = "launching_process"
    INTERACTING = "interacting"
    MONITORING = "monitoring"
    TESTING = "testing"
    DEPLOYING = "deploying"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


# Fixed progress percentage per status. Non-decreasing along the run sequence.
STATUS_PROGRESS: dict[AutomationStatus, int] = {
    AutomationStatus.IDLE: 0,
    AutomationStatus.INITIALIZING: 5,
    AutomationStatus.PROCESSING_IDEA: 10,
    AutomationStatus.LAUNCHING_PROCESS: 20,
    AutomationStatus.INTERACTING: 30,
    AutomationStatus.MONITORING: 50,
    AutomationStatus.TESTING: 70,
    AutomationStatus.DEPLOYING: 85,
    AutomationStatus.COMPLETED: 100,
    AutomationStatus.FAILED: 100,
    AutomationStatus.CANCELLED: 0,
}


@dataclass(frozen=True)
class Idea:
    name: str
    description: str
    application_type: ApplicationType
    title: str = ""
    features: tuple[str, ...] = ()
    technologies: tuple[str, ...] = ()
    dependencies: tuple[str, ...] = ()
    deployment_targets: tuple[str, ...] = ()
    deployment_settings: dict = field(default_factory=dict)
    additional_context: str = ""

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "title": self.title,
            "description": self.description,
            "applicationType": self.application_type.value,
            "features": list(self.features),
            "technologies": list(self.technologies),
            "dependencies": list(self.dependencies),
            "deploymentTarget": list(self.deployment_targets),
            "deploymentSettings": dict(self.deployment_settings),
            "additionalContext": self.additional_context,
        }


@dataclass(frozen=True)
class DeploymentSettings:
    targets: tuple[str, ...] = ()
    credentials: dict[str, str] = field(default_factory=dict)
    options: dict = field(default_factory=dict)


@dataclass(frozen=True)
class ProgressUpdate:
    status: AutomationStatus
    message: str
    percentage: float
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "message": self.message,
            "percentage": self.percentage,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class AutomationResult:
    status: AutomationStatus
    deployment_urls: dict[str, str] = field(default_factory=dict)
    deployment_errors: dict[str, str] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)
    logs: list[str] = field(default_factory=list)
    project_path: str | None = None
    duration: float = 0.0

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "deploymentUrls": dict(self.deployment_urls),
            "deploymentErrors": dict(self.deployment_errors),
            "errors": list(self.errors),
            "projectPath": self.project_path,
            "duration": round(self.duration, 3),
        }
