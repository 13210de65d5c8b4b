"""Arqia relay — FastAPI application.

The relay keeps inference credentials server-side.  Clients send a room
photo and a style id; the relay composes the prompt, submits the job to the
configured backend, tracks it, and reports its status.

Architecture
------------
- **Configuration** comes from :mod:`arqia.core.config` (``ARQIA_*``
  environment variables).
- **Generation** is delegated to a :class:`~arqia.core.service.RedesignService`
  created in the lifespan handler and stored on ``app.state``.
- **Async jobs** are driven by a background tracking task per job; status
  requests read the tracker (live jobs, then its record of recently finished
  ones) and fall back to the backend only for ids it no longer remembers.
- **Errors** from the core are mapped to HTTP responses by one exception
  handler: 400 for unknown styles and bad photos, 500 for everything else.

Endpoints
---------
========  ========================  =======================================
Method    Path                      Purpose
========  ========================  =======================================
GET       ``/health``               Liveness check
GET       ``/api/styles``           Available decorating styles
POST      ``/api/generate``         Start (async) or run (sync) a redesign
GET       ``/api/status/{job_id}``  Job status, progress and result
POST      ``/api/cancel/{job_id}``  Cancel a running job
========  ========================  =======================================

Usage
-----
CLI (installed entry point)::

    arqia-relay

Direct invocation::

    python -m arqia.api.main
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from functools import partial

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from arqia import __version__
from arqia.api.models import GenerateRequest
from arqia.core.config import ArqiaConfig, config
from arqia.core.errors import RedesignError
from arqia.core.images import SourceImage
from arqia.core.jobs import JobState
from arqia.core.service import RedesignService

logger = logging.getLogger(__name__)

# Error kinds that describe a bad request rather than a server-side problem.
_CLIENT_ERROR_KINDS = {"unknown_style", "invalid_image"}


def _tracking_done(tasks: set[asyncio.Task], task: asyncio.Task) -> None:
    """Forget a finished tracking task and log how it ended."""
    tasks.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(f"Background tracking failed: {exc}", exc_info=exc)


def create_app(
    settings: ArqiaConfig | None = None,
    service: RedesignService | None = None,
) -> FastAPI:
    """Build the relay application.

    Args:
        settings: Configuration; defaults to the global ``config``.
        service: Pre-built service (tests inject one with a fake backend).
            When omitted, one is created from *settings* at startup.

    Returns:
        The configured FastAPI application.
    """
    if settings is None:
        settings = config

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Create the redesign service on startup and release it on shutdown."""
        # --- Startup -------------------------------------------------------
        app.state.service = service or RedesignService.from_config(settings)
        app.state.tasks = set()
        logger.info(f"Relay started with {app.state.service.backend.name} backend")

        yield

        # --- Shutdown ------------------------------------------------------
        for task in list(app.state.tasks):
            task.cancel()
        if app.state.tasks:
            await asyncio.gather(*app.state.tasks, return_exceptions=True)
        await app.state.service.aclose()
        logger.info("Relay stopped.")

    app = FastAPI(
        title="Arqia Relay",
        description="Room redesign relay for AI image generation backends.",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        response = await call_next(request)
        logger.info(f"{request.method} {request.url.path} -> {response.status_code}")
        return response

    @app.exception_handler(RedesignError)
    async def redesign_error_handler(request: Request, exc: RedesignError) -> JSONResponse:
        """Render core errors as ``{"detail", "kind"}`` with a fitting status."""
        status_code = 400 if exc.kind in _CLIENT_ERROR_KINDS else 500
        if status_code == 500:
            logger.error(f"{request.method} {request.url.path} failed ({exc.kind}): {exc.detail}")
        return JSONResponse(
            status_code=status_code,
            content={"detail": exc.detail, "kind": exc.kind},
        )

    # -----------------------------------------------------------------------
    # Routes.
    # -----------------------------------------------------------------------

    @app.get("/health")
    async def health() -> dict:
        """Return a liveness marker and the current UTC time."""
        return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}

    @app.get("/api/styles")
    async def list_styles(request: Request) -> dict:
        """Return the available styles as ``{id, name, prompt}`` entries."""
        catalog = request.app.state.service.catalog
        return {
            "styles": [
                {"id": style.id, "name": style.display_name, "prompt": style.style_prompt}
                for style in catalog
            ]
        }

    @app.post("/api/generate")
    async def generate(req: GenerateRequest, request: Request) -> dict:
        """Start a redesign job, or run one to completion in sync mode.

        Async mode returns ``{jobId, status}`` immediately and tracks the job
        in the background.  Sync mode blocks until the backend returns and
        answers ``{jobId, imageUrl}``.

        Raises:
            HTTPException: 400 if the image or style is missing or unknown.
        """
        svc: RedesignService = request.app.state.service

        if not req.image:
            raise HTTPException(status_code=400, detail="Image is required")
        if not req.style or req.style not in svc.catalog:
            raise HTTPException(status_code=400, detail="Invalid style")

        image = SourceImage.from_data_url(req.image)
        logger.info(f"Starting {req.mode} generation for style: {req.style}")

        if req.mode == "sync":
            result = await svc.generate(image, req.style, mode="blocking")
            return {"jobId": result.job_id, "imageUrl": result.image_url}

        handle = await svc.submit(image, req.style)
        tasks: set[asyncio.Task] = request.app.state.tasks
        task = asyncio.create_task(svc.tracker.track(handle))
        tasks.add(task)
        task.add_done_callback(partial(_tracking_done, tasks))

        return {"jobId": handle.job_id, "status": JobState.SUBMITTED.value}

    @app.get("/api/status/{job_id}")
    async def job_status(job_id: str, request: Request) -> dict:
        """Return the status, progress estimate, and result of a job."""
        snapshot = await request.app.state.service.status(job_id)
        return {
            "jobId": snapshot.job_id,
            "status": snapshot.state.value,
            "progress": snapshot.progress,
            "imageUrl": snapshot.result_url,
            "error": snapshot.error_detail,
        }

    @app.post("/api/cancel/{job_id}")
    async def cancel_job(job_id: str, request: Request) -> dict:
        """Cancel a job.  Canceling a finished or unknown job is a no-op."""
        await request.app.state.service.cancel(job_id)
        return {"jobId": job_id, "status": JobState.CANCELED.value}

    return app


app = create_app()


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Launch the uvicorn ASGI server.

    Reads host, port and log level from :data:`~arqia.core.config.config`
    (``ARQIA_SERVER_HOST``, ``ARQIA_SERVER_PORT``, ``ARQIA_LOG_LEVEL``).

    This function is registered as the ``arqia-relay`` console script in
    ``pyproject.toml``.
    """
    import uvicorn

    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    if config.backend == "replicate" and not config.replicate_api_token:
        logger.warning("ARQIA_REPLICATE_API_TOKEN is not set; the relay will fail to start")

    logger.info(f"Launching relay on {config.server_host}:{config.server_port}")
    uvicorn.run(
        "arqia.api.main:app",
        host=config.server_host,
        port=config.server_port,
        reload=False,
    )


if __name__ == "__main__":
    main()
