"""
Recurring monitoring of previously scanned sites.

``enroll`` registers an (email, url) pair from a completed scan.
``run_due`` is called by an external scheduler: it picks the sites
that are due, re-scans each one sequentially through the job
orchestrator, diffs the new result against the last one and hands any
regression to the alert collaborator.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta

from src.config import ScannerSettings
from src.jobs import orchestrator, repository
from src.models import monitoring, scan
from src.monitoring import alerts, diff
from src.utils import errors, logger

log = logger.create_logger("Monitoring")

# Extra time granted on top of the job timeout before a site is reported
# as timed out; covers the two repository writes around the scan.
SITE_TIMEOUT_MARGIN_SECONDS = 20


class EnrollmentError(Exception):
    """The enrollment request was rejected.

    ``status_code`` is the HTTP status the route should answer with.
    """

    def __init__(self, message: str, status_code: int = 400) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def is_valid_email(email: str) -> bool:
    """Minimal check: something before and after one ``@`` and no spaces."""
    trimmed = email.strip()
    at = trimmed.find("@")
    return 0 < at < len(trimmed) - 1 and " " not in trimmed


class MonitoringService:
    """Enrolls sites and runs the periodic re-scan cycle."""

    def __init__(
        self,
        jobs: repository.ScanRepository,
        sites: repository.MonitoredSiteRepository,
        job_orchestrator: orchestrator.JobOrchestrator,
        alert_sender: alerts.AlertSender,
        settings: ScannerSettings,
    ) -> None:
        self._jobs = jobs
        self._sites = sites
        self._orchestrator = job_orchestrator
        self._alerts = alert_sender
        self._settings = settings

    # ==========================================================================
    # Enrollment
    # ==========================================================================

    async def enroll(self, email: str, job_id: str) -> monitoring.MonitoredSite:
        """Monitor the URL of the completed job *job_id* for *email*.

        Raises:
            EnrollmentError: invalid email, unknown or unfinished job,
                or the per-email site limit is reached.
            repository.RepositoryError: storage failed.
        """
        if not is_valid_email(email):
            raise EnrollmentError("A valid email address is required")
        normalized = email.strip().lower()

        try:
            job = await self._jobs.load_job(job_id)
        except repository.JobNotFound as exc:
            raise EnrollmentError("Scan not found", status_code=404) from exc

        if job.status != "done":
            raise EnrollmentError("Monitoring is only possible for completed scans")

        limit = self._settings.monitor_max_sites_per_email
        if await self._sites.count_sites(normalized) >= limit:
            raise EnrollmentError(f"At most {limit} URLs per email address are allowed")

        site = await self._sites.upsert_site(job.url, normalized, job.id)
        log.info("Site enrolled for monitoring", {"url": job.url, "siteId": site.id})
        return site

    # ==========================================================================
    # Monitoring run
    # ==========================================================================

    async def run_due(self) -> list[monitoring.SiteOutcome]:
        """Process every due site, one after another."""
        threshold = repository.utcnow() - timedelta(hours=self._settings.monitor_interval_hours)
        sites = await self._sites.find_due_sites(threshold, self._settings.monitor_max_sites_per_run)
        if not sites:
            log.info("No monitored sites due")
            return []

        log.info("Processing monitored sites", {"count": len(sites)})
        outcomes: list[monitoring.SiteOutcome] = []
        for site in sites:
            outcome = await self.process_site(site)
            outcomes.append(outcome)
            log.info("Monitored site processed", {"url": site.url, "status": outcome.status, "detail": outcome.detail})
        return outcomes

    async def process_site(self, site: monitoring.MonitoredSite) -> monitoring.SiteOutcome:
        def outcome(status: monitoring.SiteOutcomeStatus, detail: str) -> monitoring.SiteOutcome:
            return monitoring.SiteOutcome(url=site.url, email=site.email, status=status, detail=detail)

        try:
            job_id = await self._jobs.insert_job(site.url)
        except repository.RepositoryError as exc:
            return outcome("error", f"Insert failed: {exc}")

        limit = self._settings.job_timeout_seconds + SITE_TIMEOUT_MARGIN_SECONDS
        timed_out = False
        try:
            async with asyncio.timeout(limit):
                await self._orchestrator.dispatch(job_id)
        except TimeoutError:
            timed_out = True
        finally:
            # last_checked_at moves forward whatever the scan outcome.
            await self._touch(site.id, last_checked_at=repository.utcnow())

        if timed_out:
            return outcome("timeout", f"Scan {job_id} timed out after {limit:g}s")

        try:
            job = await self._jobs.load_job(job_id)
        except repository.RepositoryError as exc:
            return outcome("error", f"Scan could not be loaded: {exc}")

        if job.status != "done" or job.result is None:
            info = errors.decode_error(job.error)
            log.warn("Monitoring scan failed", {"url": site.url, "jobId": job_id, "code": info.code})
            return outcome("error", f"Scan ended with status={job.status}")

        await self._touch(site.id, last_scan_id=job_id)

        previous = await self._previous_result(site.last_scan_id)
        if previous is None:
            return outcome("ok", "Baseline set")

        changes = diff.diff_scans(previous, job.result)
        better = diff.improvements(previous, job.result)
        if better:
            log.debug("Improvements observed", {"url": site.url, "fields": better})

        if not changes.has_changes:
            return outcome("ok", "No changes detected")

        alert = alerts.Alert(recipient=site.email, target_url=site.url, job_id=job_id, diff=changes)
        try:
            await self._alerts.send_alert(alert)
        except alerts.AlertDeliveryError as exc:
            log.error("Alert delivery failed", {"url": site.url, "error": errors.get_error_message(exc)})
            return outcome("error", f"Email failed: {errors.get_error_message(exc)}")

        return outcome("ok", "Alert sent")

    async def _previous_result(self, scan_id: str | None) -> scan.ScanResult | None:
        if not scan_id:
            return None
        try:
            previous = await self._jobs.load_job(scan_id)
        except repository.RepositoryError:
            log.warn("Previous scan not found; resetting baseline", {"jobId": scan_id})
            return None
        return previous.result

    async def _touch(self, site_id: str, **changes: object) -> None:
        try:
            await self._sites.update_site(site_id, **changes)
        except repository.RepositoryError as exc:
            log.error("Could not update monitored site", {"siteId": site_id, "error": str(exc)})
