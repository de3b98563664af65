"""Subprocess wrappers for package-manager and deployment CLI invocations."""

import logging
import os
import subprocess
from pathlib import Path

from composer_automation.errors import CommandError

logger = logging.getLogger(__name__)


def run_command(
    command: list[str],
    cwd: str | Path | None = None,
    env: dict[str, str] | None = None,
    timeout: float | None = None,
) -> str:
    """Run a command and return its combined stdout/stderr.

    Raises CommandError on a non-zero exit, on a missing executable and on
    timeout. ``env`` entries are added on top of the current environment.
    """
    full_env = {**os.environ, **env} if env else None
    logger.debug("Running %s in %s", " ".join(command), cwd or os.getcwd())
    try:
        result = subprocess.run(
            command,
            cwd=cwd,
            env=full_env,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            timeout=timeout,
        )
    except FileNotFoundError as e:
        raise CommandError(command, None, f"executable not found ({e.filename or command[0]})") from e
    except subprocess.TimeoutExpired as e:
        output = e.output if isinstance(e.output, str) else ""
        raise CommandError(command, None, f"timed out after {timeout:g}s {output}".strip()) from e
    except OSError as e:
        raise CommandError(command, None, str(e)) from e

    if result.returncode != 0:
        raise CommandError(command, result.returncode, result.stdout or "")
    return result.stdout or ""
