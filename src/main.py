"""
Server entry point: FastAPI app setup and route configuration.

The lifespan builds the repositories, worker pool, orchestrator and
services once per process and shuts the worker pool down on exit.
"""

from __future__ import annotations

import contextlib
from collections.abc import AsyncGenerator

import dotenv
import fastapi
import uvicorn
from fastapi.middleware import cors

from src import config
from src.jobs import admission, orchestrator, repository, submission, worker_pool
from src.monitoring import alerts, service
from src.routes import dependencies, monitoring, scans
from src.utils import logger

dotenv.load_dotenv()

log = logger.create_logger("Server")

SERVICE_NAME = "privacy-scan-worker"

# Time in-flight scans get to finish on shutdown before being cancelled.
SHUTDOWN_GRACE_SECONDS = 5.0


def build_services(settings: config.ScannerSettings) -> dependencies.AppServices:
    """Wire the default in-process collaborators."""
    jobs = repository.InMemoryScanRepository()
    sites = repository.InMemoryMonitoredSiteRepository()
    job_orchestrator = orchestrator.JobOrchestrator(jobs, settings, pool=worker_pool.WorkerPool())
    admission_control = admission.SlidingWindowAdmission(
        max_requests=settings.rate_limit_max_requests,
        window_seconds=settings.rate_limit_window_seconds,
        cooldown_seconds=settings.rate_limit_cooldown_seconds,
        max_entries=settings.rate_limit_max_entries,
    )
    return dependencies.AppServices(
        settings=settings,
        jobs=jobs,
        sites=sites,
        orchestrator=job_orchestrator,
        submission=submission.SubmissionService(jobs, job_orchestrator, admission_control, settings),
        monitoring=service.MonitoringService(
            jobs, sites, job_orchestrator, alerts.create_alert_sender(settings), settings
        ),
    )


def create_app(services: dependencies.AppServices | None = None) -> fastapi.FastAPI:
    """Build the application; *services* replaces the default wiring."""

    @contextlib.asynccontextmanager
    async def lifespan(app: fastapi.FastAPI) -> AsyncGenerator[None]:
        current = services if services is not None else build_services(config.get_settings())
        logger.configure_file_logging(current.settings.write_log_files)
        app.state.services = current

        log.section("Privacy Scan Worker Started")
        log.info("Environment", {
            "env": current.settings.environment,
            "allowDevPorts": current.settings.allow_dev_ports,
        })
        try:
            yield
        finally:
            await current.orchestrator.pool.shutdown(SHUTDOWN_GRACE_SECONDS)

    app = fastapi.FastAPI(title="Privacy Scan Worker", lifespan=lifespan)

    # ============================================================================
    # Middleware
    # ============================================================================

    app.add_middleware(
        cors.CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ============================================================================
    # API Routes
    # ============================================================================

    app.include_router(scans.router)
    app.include_router(monitoring.router)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok", "service": SERVICE_NAME}

    return app


app = create_app()


def run() -> None:
    """Console entry point."""
    settings = config.get_settings()
    uvicorn.run("src.main:app", host=settings.host, port=settings.port)
