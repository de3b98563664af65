"""CLI entry point for composer automation."""

import json
import logging
import sys
from dataclasses import replace
from pathlib import Path

import click

from composer_automation.config import Configuration, load_config
from composer_automation.core.events import ERROR, PROGRESS_UPDATE
from composer_automation.core.ideas import parse_idea
from composer_automation.errors import ConfigError, IdeaValidationError
from composer_automation.integrations import slack as slack_mod
from composer_automation.models import AutomationResult, AutomationStatus, LogLevel, normalize_target

LOG_LEVELS = ["debug", "info", "warn", "warning", "error"]


def configure_logging(level: LogLevel):
    logging.basicConfig(
        level=level.to_logging(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        force=True,
    )


@click.group()
def main():
    """cca - Cursor Composer Automation CLI"""
    pass


# ── Process Command ───────────────────────────────────────────────────────────


@main.command("process")
@click.option("--idea", "idea_path", required=True, help="Path to the idea JSON file")
@click.option("--output", default=None, help="Working directory for the generated application")
@click.option("--type", "app_type", default=None, help="Application type if the idea file has none")
@click.option("--targets", default=None, help="Comma-separated deployment targets")
@click.option("--config", "config_path", default=None, help="Path to a JSON configuration file")
@click.option("--log-level", type=click.Choice(LOG_LEVELS, case_sensitive=False), default=None)
@click.option("--cursor-path", default=None, help="Path to the Cursor executable")
@click.option("--completion-timeout", type=float, default=None,
              help="Seconds to wait for the composer to report completion (0 = don't wait)")
@click.option("--notify", "notify_channel", default=None, help="Slack channel to notify when done")
@click.option("--json-output", "--json", is_flag=True, help="Print the result as JSON")
def process_command(
    idea_path, output, app_type, targets, config_path, log_level, cursor_path,
    completion_timeout, notify_channel, json_output,
):
    """Process an idea and generate an application."""
    from composer_automation.core.orchestrator import Orchestrator

    try:
        config = load_config(
            config_path,
            working_directory=Path(output).resolve() if output else None,
            log_level=LogLevel.parse(log_level) if log_level else None,
            cursor_path=cursor_path,
            completion_timeout=completion_timeout,
        )
        config.ensure_working_directory()
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if targets:
        config = _with_targets(config, targets)
    configure_logging(config.log_level)

    idea = _read_idea(idea_path)
    if app_type and not (idea.get("applicationType") or idea.get("type")):
        idea["applicationType"] = app_type

    orchestrator = Orchestrator(config)
    if not json_output:
        orchestrator.subscribe(
            PROGRESS_UPDATE,
            lambda u: click.echo(f"Progress: {u.percentage:.0f}% - {u.message}"),
        )
    orchestrator.subscribe(ERROR, lambda message: click.echo(f"Error: {message}", err=True))

    result = orchestrator.run(idea)

    if notify_channel:
        _notify(config, notify_channel, str(idea.get("name") or idea_path), result)

    if json_output:
        click.echo(json.dumps(result.to_dict(), indent=2))
    else:
        _print_result(result)

    if result.status != AutomationStatus.COMPLETED:
        sys.exit(1)


# ── Validate Command ──────────────────────────────────────────────────────────


@main.command("validate")
@click.option("--idea", "idea_path", required=True, help="Path to the idea JSON file")
@click.option("--lenient", is_flag=True, help="Accept ideas without features")
def validate_command(idea_path, lenient):
    """Validate an idea file and print its normalised form."""
    data = _read_idea(idea_path)
    try:
        idea = parse_idea(data, strict=not lenient)
    except IdeaValidationError as e:
        click.echo(f"Invalid idea: {e}", err=True)
        sys.exit(1)
    click.echo(json.dumps(idea.to_dict(), indent=2))


# ── Service Command ───────────────────────────────────────────────────────────


@main.command("service")
@click.option("--config", "-c", "config_path", required=True, help="Path to configuration file")
@click.option("--port", "-p", type=int, default=None, help="Port to listen on (default 3000)")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
def service_command(config_path, port, verbose):
    """Start the automation service."""
    from composer_automation.web.app import run_server

    try:
        config = load_config(
            config_path,
            service_mode=True,
            port=port,
            log_level=LogLevel.DEBUG if verbose else None,
        )
        config.ensure_working_directory()
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    configure_logging(config.log_level)
    click.echo(f"Starting automation service on http://{config.host}:{config.listen_port}")
    run_server(config)


# ── MCP Server Command ───────────────────────────────────────────────────────


@main.group("mcp")
def mcp_group():
    """MCP server commands."""
    pass


@mcp_group.command("serve")
def mcp_serve():
    """Start the MCP server (stdio transport)."""
    from composer_automation.mcp.server import mcp

    mcp.run(transport="stdio")


# ── Helpers ───────────────────────────────────────────────────────────────────


def _read_idea(idea_path: str) -> dict:
    path = Path(idea_path)
    try:
        data = json.loads(path.read_text())
    except OSError as e:
        click.echo(f"Error: cannot read idea file {path}: {e.strerror or e}", err=True)
        sys.exit(1)
    except json.JSONDecodeError as e:
        click.echo(f"Error: idea file {path} is not valid JSON: {e}", err=True)
        sys.exit(1)
    if not isinstance(data, dict):
        click.echo(f"Error: idea file {path} must contain a JSON object", err=True)
        sys.exit(1)
    return data


def _with_targets(config: Configuration, targets: str) -> Configuration:
    parsed = tuple(normalize_target(t) for t in targets.split(",") if t.strip())
    return replace(config, deployment_settings=replace(config.deployment_settings, targets=parsed))


def _notify(config: Configuration, channel: str, name: str, result: AutomationResult):
    try:
        slack_mod.send_message(
            config.slack_bot_token,
            channel,
            slack_mod.format_run_summary(name, result),
            blocks=slack_mod.format_run_notification(name, result),
        )
    except slack_mod.SlackError as e:
        click.echo(f"Error: {e}", err=True)
    except Exception as e:
        click.echo(f"Error: Slack notification failed: {e}", err=True)


def _print_result(result: AutomationResult):
    click.echo(f"Status: {result.status.value}")
    click.echo(f"  Duration: {result.duration:.1f}s")
    if result.project_path:
        click.echo(f"  Project: {result.project_path}")
    for target, url in result.deployment_urls.items():
        click.echo(f"  Deployed to {target}: {url}")
    for target, error in result.deployment_errors.items():
        click.echo(f"  Failed to deploy to {target}: {error}")
    for error in result.errors:
        click.echo(f"  Error: {error}")


if __name__ == "__main__":
    main()
