"""
Scan job orchestrator.

Owns the lifecycle of a job: ``queued -> running -> done | error``.
Each job runs as one supervised background task.  The whole scan
(static guard, DNS guard, browser session) sits inside a single
wall-clock timeout; any failure is classified into the fixed error
taxonomy and persisted as ``"<code>: <detail>"``.

A job is only scanned after it has been durably marked ``running``.
Re-running a job that already left ``queued`` is a no-op.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from src.config import ScannerSettings
from src.jobs import repository, worker_pool
from src.models import scan
from src.pipeline import scan_pipeline
from src.utils import errors, logger

log = logger.create_logger("Orchestrator")

Scanner = Callable[[str], Awaitable[scan.ScanResult]]


class JobOrchestrator:
    """Runs scan jobs against a repository through a worker pool."""

    def __init__(
        self,
        jobs: repository.ScanRepository,
        settings: ScannerSettings,
        pool: worker_pool.WorkerPool | None = None,
        scanner: Scanner | None = None,
    ) -> None:
        self._jobs = jobs
        self._settings = settings
        self._pool = pool if pool is not None else worker_pool.WorkerPool()
        self._scanner = scanner or self._default_scanner

    async def _default_scanner(self, url: str) -> scan.ScanResult:
        return await scan_pipeline.run_scan(url, self._settings)

    @property
    def pool(self) -> worker_pool.WorkerPool:
        return self._pool

    # ==========================================================================
    # Submission
    # ==========================================================================

    async def submit(self, url: str, requester: str | None = None) -> str:
        """Create a queued job, start it in the background and return its id."""
        job_id = await self._jobs.insert_job(url, requester)
        log.info("Job queued", {"jobId": job_id, "url": url})
        self.dispatch(job_id)
        return job_id

    def dispatch(self, job_id: str) -> asyncio.Task[scan.JobUpdate | None]:
        """Hand an existing job to the worker pool without waiting for it."""
        return self._pool.dispatch(self.run_job(job_id), name=f"scan-{job_id}")

    # ==========================================================================
    # Execution
    # ==========================================================================

    async def run_job(self, job_id: str) -> scan.JobUpdate | None:
        """Execute one job to a terminal state.

        Returns the terminal update that was written, or ``None`` when
        the attempt was abandoned (job missing, not queued, or the
        ``running`` transition could not be persisted).
        """
        logger.bind_job(job_id)
        logger.start_log_file(job_id)
        try:
            return await self._run(job_id)
        finally:
            logger.end_log_file()

    async def _run(self, job_id: str) -> scan.JobUpdate | None:
        try:
            job = await self._jobs.load_job(job_id)
        except repository.RepositoryError as exc:
            log.error("Scan job could not be loaded", {"jobId": job_id, "error": str(exc)})
            return None

        if job.status != "queued":
            log.warn("Job is not queued; ignoring", {"jobId": job_id, "status": job.status})
            return None

        try:
            await self._jobs.update_job(job_id, scan.JobUpdate(status="running"))
        except repository.RepositoryError as exc:
            log.error("Could not mark job running", {"jobId": job_id, "error": str(exc)})
            return None

        log.info("Scan started", {"jobId": job_id, "url": job.url})
        log.start_timer("job")

        try:
            result = await self._scan_with_timeout(job.url)
        except asyncio.CancelledError:
            await self._mark_error(job_id, errors.ScanErrorInfo(code="unknown", detail="Scan was cancelled"))
            raise
        except Exception as exc:
            info = errors.classify(exc)
            duration = log.end_timer("job", "Scan failed")
            log.error("Scan failed", {"jobId": job_id, "code": info.code, "detail": info.detail, "durationMs": int(duration)})
            return await self._mark_error(job_id, info)

        update = scan.JobUpdate(status="done", result=result)
        try:
            await self._jobs.update_job(job_id, update)
        except repository.RepositoryError as exc:
            log.error("Could not persist scan result", {"jobId": job_id, "error": str(exc)})
            return await self._mark_error(
                job_id, errors.ScanErrorInfo(code="unknown", detail=f"Result could not be stored: {exc}")
            )

        duration = log.end_timer("job", "Scan completed")
        log.success("Scan completed", {
            "jobId": job_id,
            "durationMs": int(duration),
            "usesExternalFonts": result.uses_external_fonts,
            "usesAnalytics": result.uses_analytics,
            "usesSocialPixel": result.uses_social_pixel,
            "setsTrackingCookie": result.sets_tracking_cookie,
            "externalHosts": len(result.external_hosts),
            "cookies": len(result.cookies),
        })
        return update

    async def _scan_with_timeout(self, url: str) -> scan.ScanResult:
        limit = self._settings.job_timeout_seconds
        try:
            async with asyncio.timeout(limit) as deadline:
                return await self._scanner(url)
        except TimeoutError as exc:
            if deadline.expired():
                raise errors.ScanError(
                    "navigation_timeout", f"Overall timeout of {limit:g}s exceeded"
                ) from exc
            raise

    async def _mark_error(self, job_id: str, info: errors.ScanErrorInfo) -> scan.JobUpdate:
        update = scan.JobUpdate(status="error", error=errors.encode_error(info.code, info.detail))
        try:
            await self._jobs.update_job(job_id, update)
        except repository.RepositoryError as exc:
            # Not retried: the attempt is already lost.
            log.error("Could not persist job error", {"jobId": job_id, "error": str(exc)})
        return update
