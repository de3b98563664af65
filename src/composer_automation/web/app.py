"""HTTP interface for service mode."""

import contextlib
import json
import logging

import uvicorn
from starlette.applications import Starlette
from starlette.concurrency import run_in_threadpool
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from composer_automation.config import Configuration
from composer_automation.core.service import AutomationService

logger = logging.getLogger(__name__)


def _service(request: Request) -> AutomationService:
    return request.app.state.service


# ── Handlers ──────────────────────────────────────────────────────────────────


async def health(request: Request):
    return JSONResponse({"status": "ok"})


async def process_idea(request: Request):
    try:
        body = await request.json()
    except json.JSONDecodeError:
        return JSONResponse({"error": "Request body must be JSON"}, status_code=400)

    idea = body.get("idea") if isinstance(body, dict) else None
    if not idea:
        return JSONResponse({"error": "Idea input is required"}, status_code=400)

    try:
        job_id = _service(request).submit(idea)
    except Exception:
        logger.exception("Error accepting idea")
        return JSONResponse({"error": "Internal server error"}, status_code=500)
    return JSONResponse({"jobId": job_id}, status_code=202)


async def job_status(request: Request):
    job_id = request.path_params["job_id"]
    job = _service(request).get_job(job_id)
    if not job:
        return JSONResponse({"error": "Job not found"}, status_code=404)
    return JSONResponse(job.to_dict())


async def list_jobs(request: Request):
    jobs = _service(request).list_jobs()
    return JSONResponse({job.id: job.to_dict() for job in jobs})


# ── App ───────────────────────────────────────────────────────────────────────


def create_app(service: AutomationService) -> Starlette:
    """Build the Starlette app. Its lifespan starts and stops ``service``."""

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette):
        await run_in_threadpool(service.start)
        try:
            yield
        finally:
            await run_in_threadpool(service.stop)

    routes = [
        Route("/health", health),
        Route("/process", process_idea, methods=["POST"]),
        Route("/status/{job_id}", job_status),
        Route("/jobs", list_jobs),
    ]
    app = Starlette(routes=routes, lifespan=lifespan)
    app.state.service = service
    return app


def run_server(config: Configuration):
    service = AutomationService(config)
    app = create_app(service)
    logger.info("Automation service listening on %s:%s", config.host, config.listen_port)
    uvicorn.run(app, host=config.host, port=config.listen_port)
