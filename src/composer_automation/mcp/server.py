"""MCP server exposing idea validation and job tools."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from mcp.server.fastmcp import Context, FastMCP

from composer_automation.config import Configuration, get_config
from composer_automation.core.ideas import parse_idea
from composer_automation.core.service import AutomationService
from composer_automation.errors import IdeaValidationError


@dataclass
class AppContext:
    config: Configuration
    service: AutomationService


@asynccontextmanager
async def app_lifespan(server: FastMCP) -> AsyncIterator[AppContext]:
    """Create the job service on startup.

    The controlled application is not pre-launched here; each job launches
    and closes it for the duration of its run.
    """
    config = get_config()
    config.ensure_working_directory()
    yield AppContext(config=config, service=AutomationService(config))


mcp = FastMCP("composer-automation", lifespan=app_lifespan)


def _ctx(ctx: Context) -> AppContext:
    """Extract AppContext from MCP Context."""
    return ctx.request_context.lifespan_context


# ── Tools ─────────────────────────────────────────────────────────────────────


@mcp.tool()
def validate_idea(ctx: Context, idea: dict, strict: bool = True) -> dict:
    """Validate an idea and return its normalised form.

    With strict=True (the policy used for runs) at least one feature is required.
    """
    try:
        parsed = parse_idea(idea, strict=strict)
    except IdeaValidationError as e:
        return {"valid": False, "error": str(e)}
    return {"valid": True, "idea": parsed.to_dict()}


@mcp.tool()
def process_idea(ctx: Context, idea: dict) -> dict:
    """Queue an idea for automation. Returns the job ID to poll with get_job_status."""
    job_id = _ctx(ctx).service.submit(idea)
    return {"jobId": job_id}


@mcp.tool()
def get_job_status(ctx: Context, job_id: str) -> dict:
    """Get the status, progress and (when finished) result of a job."""
    job = _ctx(ctx).service.get_job(job_id)
    if not job:
        return {"error": f"Job not found: {job_id}"}
    return job.to_dict()


@mcp.tool()
def list_jobs(ctx: Context) -> list[dict]:
    """List all jobs still within the retention window."""
    return [job.to_dict() for job in _ctx(ctx).service.list_jobs()]
