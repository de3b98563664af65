"""Slack Web API integration for run notifications."""

from dataclasses import dataclass

from composer_automation.models import AutomationResult, AutomationStatus


class SlackError(Exception):
    """Raised when a Slack operation fails."""


@dataclass
class SlackMessage:
    channel: str
    ts: str
    text: str


def get_client(token: str | None):
    """Get a Slack WebClient. Returns None if no token provided."""
    if not token:
        return None
    from slack_sdk import WebClient
    return WebClient(token=token)


def send_message(
    token: str | None,
    channel: str,
    text: str,
    blocks: list[dict] | None = None,
) -> SlackMessage:
    """Send a message to a Slack channel."""
    client = get_client(token)
    if not client:
        raise SlackError("Slack not configured: SLACK_BOT_TOKEN not set")

    response = client.chat_postMessage(channel=channel, text=text, blocks=blocks)
    return SlackMessage(channel=response["channel"], ts=response["ts"], text=text)


def format_run_summary(name: str, result: AutomationResult) -> str:
    """Plain-text fallback for a run notification."""
    return f"Automation run for {name} {result.status.value} in {result.duration:.1f}s"


def format_run_notification(name: str, result: AutomationResult, job_id: str | None = None) -> list[dict]:
    """Format a finished run as Slack blocks."""
    emoji = ":white_check_mark:" if result.status == AutomationStatus.COMPLETED else ":x:"
    job = f" (`{job_id}`)" if job_id else ""

    lines = [f"{emoji} *Automation {result.status.value}*", f"*{name}*{job} in {result.duration:.1f}s"]
    for target, url in result.deployment_urls.items():
        lines.append(f":rocket: {target}: <{url}|{url}>")
    for target, error in result.deployment_errors.items():
        lines.append(f":warning: {target}: {error[:200]}")
    if result.errors:
        lines.append(f"Error: {result.errors[0][:200]}")

    return [{"type": "section", "text": {"type": "mrkdwn", "text": "\n".join(lines)}}]
