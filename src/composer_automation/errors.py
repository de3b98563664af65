"""Exception types raised by the automation components."""


class AutomationError(Exception):
    """Base class for all composer automation errors."""


class IdeaValidationError(AutomationError, ValueError):
    """Raised when an idea is malformed."""


class ConfigError(AutomationError):
    """Raised when configuration is missing or malformed."""


class ServiceModeError(AutomationError):
    """Raised when a service operation is used outside service mode."""


# ── Process controller ────────────────────────────────────────────────────────


class ControllerError(AutomationError):
    """Base class for controlled-process failures."""


class NotFoundError(ControllerError):
    """The controlled application's executable does not exist."""

    def __init__(self, path: str) -> None:
        super().__init__(f"Executable not found at path: {path}")
        self.path = path


class NotRunningError(ControllerError):
    """An operation needs the controlled application to be running."""

    def __init__(self, operation: str) -> None:
        super().__init__(f"Cannot {operation}: controlled application is not running")
        self.operation = operation


class LaunchFailedError(ControllerError):
    """The controlled application could not be started or died while settling."""


class TimeoutExceededError(ControllerError):
    """A bounded wait on the controlled application expired."""

    def __init__(self, what: str, timeout: float) -> None:
        super().__init__(f"Timed out after {timeout:g}s waiting for {what}")
        self.what = what
        self.timeout = timeout


# ── Subprocesses and deployment ───────────────────────────────────────────────


class CommandError(AutomationError):
    """Raised when a subprocess exits non-zero or cannot be started."""

    def __init__(self, command: list[str], exit_code: int | None, output: str) -> None:
        cmd = " ".join(command)
        if exit_code is None:
            message = f"{cmd} could not be started: {output}"
        else:
            message = f"{cmd} failed with exit code {exit_code}: {output.strip()}"
        super().__init__(message)
        self.command = command
        self.exit_code = exit_code
        self.output = output


class DeploymentError(AutomationError):
    """Raised when a deployment to a single target fails."""


class UnsupportedTargetError(DeploymentError):
    """The deployment target identifier is not one of the known targets."""

    def __init__(self, target: str) -> None:
        super().__init__(f"Unsupported deployment target: {target}")
        self.target = target


class TargetNotImplementedError(DeploymentError):
    """The target is known but has no real deployment routine."""

    def __init__(self, target: str) -> None:
        super().__init__(f"Deployment to {target} is not implemented")
        self.target = target


class PackagingError(DeploymentError):
    """Installing or building the project failed; nothing can be deployed."""
