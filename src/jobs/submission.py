"""
Submission path for new scans.

Everything that happens before a job exists: admission control, the
static URL guard, the pre-flight DNS-rebind guard and the idempotency
lookup.  Only then is a job inserted and dispatched.
"""

from __future__ import annotations

import dataclasses
from datetime import timedelta

from src.config import ScannerSettings
from src.jobs import admission, orchestrator, repository
from src.security import dns_guard, url_guard
from src.utils import errors, logger

log = logger.create_logger("Submission")


class AdmissionRefused(Exception):
    """The requester is over its submission budget."""

    def __init__(self, decision: admission.AdmissionDecision) -> None:
        super().__init__(decision.reason or "refused")
        self.decision = decision


@dataclasses.dataclass(frozen=True)
class SubmissionOutcome:
    job_id: str
    url: str
    reused: bool = False


class SubmissionService:
    """Validates raw submissions and turns them into dispatched jobs."""

    def __init__(
        self,
        jobs: repository.ScanRepository,
        job_orchestrator: orchestrator.JobOrchestrator,
        admission_control: admission.AdmissionControl,
        settings: ScannerSettings,
        lookup: dns_guard.Lookup | None = None,
    ) -> None:
        self._jobs = jobs
        self._orchestrator = job_orchestrator
        self._admission = admission_control
        self._settings = settings
        self._lookup = lookup

    async def submit(self, raw_url: str, requester: str) -> SubmissionOutcome:
        """Admit, validate and enqueue a scan of *raw_url*.

        Raises:
            AdmissionRefused: the requester hit the window or cooldown.
            errors.ScanError: ``blocked_url`` or ``dns_failed`` from the guards.
            repository.RepositoryError: the job could not be stored.
        """
        decision = self._admission.check(requester)
        if not decision.allowed:
            log.warn("Submission refused", {
                "requester": requester,
                "reason": decision.reason,
                "retryAfter": round(decision.retry_after_seconds, 1),
            })
            raise AdmissionRefused(decision)

        target = url_guard.normalize_url(raw_url, allow_dev_ports=self._settings.allow_dev_ports)

        check = await dns_guard.check_rebind(target.hostname, self._settings.dns_timeout_seconds, self._lookup)
        if not check.safe:
            raise errors.ScanError(check.code or "blocked_url", check.reason or "DNS check failed")

        since = repository.utcnow() - timedelta(seconds=self._settings.idempotency_window_seconds)
        existing = await self._jobs.find_recent_job(target.url, requester, since)
        if existing is not None:
            log.info("Reusing recent job", {"jobId": existing.id, "url": target.url})
            return SubmissionOutcome(job_id=existing.id, url=target.url, reused=True)

        job_id = await self._orchestrator.submit(target.url, requester)
        return SubmissionOutcome(job_id=job_id, url=target.url)
