"""
Persistence collaborators for scan jobs and monitored sites.

The orchestrator and the monitoring service only depend on the two
``Protocol`` interfaces below.  The in-memory implementations back
the single-process deployment and the test suite; a relational store
can be swapped in by implementing the same methods.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Protocol

from src.models import monitoring, scan

# Sentinel distinguishing "leave unchanged" from an explicit None.
_UNSET: object = object()


class RepositoryError(Exception):
    """A persistence call failed."""


class JobNotFound(RepositoryError):
    """No job exists with the requested id."""


class InvalidTransition(RepositoryError):
    """An update would move a job backwards or skip a state."""


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(UTC)


# ============================================================================
# Interfaces
# ============================================================================


class ScanRepository(Protocol):
    """Load-by-id, insert and update-by-id access to scan jobs."""

    async def load_job(self, job_id: str) -> scan.ScanJob: ...

    async def insert_job(self, url: str, requester: str | None = None) -> str: ...

    async def update_job(self, job_id: str, update: scan.JobUpdate) -> None: ...

    async def find_recent_job(self, url: str, requester: str, since: datetime) -> scan.ScanJob | None: ...


class MonitoredSiteRepository(Protocol):
    """Storage for sites enrolled in recurring monitoring."""

    async def upsert_site(self, url: str, email: str, last_scan_id: str) -> monitoring.MonitoredSite: ...

    async def count_sites(self, email: str) -> int: ...

    async def find_due_sites(self, checked_before: datetime, limit: int) -> list[monitoring.MonitoredSite]: ...

    async def update_site(
        self,
        site_id: str,
        *,
        last_scan_id: str | None | object = _UNSET,
        last_checked_at: datetime | None | object = _UNSET,
    ) -> None: ...


# ============================================================================
# In-memory implementations
# ============================================================================


class InMemoryScanRepository:
    """Process-local job store that enforces forward-only transitions."""

    def __init__(self) -> None:
        self._jobs: dict[str, scan.ScanJob] = {}

    async def load_job(self, job_id: str) -> scan.ScanJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFound(f"Scan job not found: {job_id}")
        return job.model_copy()

    async def insert_job(self, url: str, requester: str | None = None) -> str:
        job = scan.ScanJob(id=new_id(), url=url, created_at=utcnow(), requester=requester)
        self._jobs[job.id] = job
        return job.id

    async def update_job(self, job_id: str, update: scan.JobUpdate) -> None:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFound(f"Scan job not found: {job_id}")
        if not scan.can_transition(job.status, update.status):
            raise InvalidTransition(f"Job {job_id}: {job.status} -> {update.status} is not allowed")

        self._jobs[job_id] = scan.ScanJob(
            id=job.id,
            url=job.url,
            created_at=job.created_at,
            requester=job.requester,
            status=update.status,
            result=update.result,
            error=update.error,
        )

    async def find_recent_job(self, url: str, requester: str, since: datetime) -> scan.ScanJob | None:
        matches = [
            job
            for job in self._jobs.values()
            if job.url == url and job.requester == requester and job.created_at > since
        ]
        if not matches:
            return None
        return max(matches, key=lambda job: job.created_at).model_copy()


class InMemoryMonitoredSiteRepository:
    """Process-local store of monitored sites, unique per (email, url)."""

    def __init__(self) -> None:
        self._sites: dict[str, monitoring.MonitoredSite] = {}

    async def upsert_site(self, url: str, email: str, last_scan_id: str) -> monitoring.MonitoredSite:
        for site_id, site in self._sites.items():
            if site.email == email and site.url == url:
                updated = site.model_copy(update={"last_scan_id": last_scan_id})
                self._sites[site_id] = updated
                return updated.model_copy()

        site = monitoring.MonitoredSite(
            id=new_id(), url=url, email=email, last_scan_id=last_scan_id, created_at=utcnow()
        )
        self._sites[site.id] = site
        return site.model_copy()

    async def count_sites(self, email: str) -> int:
        return sum(1 for site in self._sites.values() if site.email == email)

    async def find_due_sites(self, checked_before: datetime, limit: int) -> list[monitoring.MonitoredSite]:
        due = [
            site
            for site in self._sites.values()
            if site.last_checked_at is None or site.last_checked_at < checked_before
        ]
        # Never-checked sites first, then the longest-waiting ones.
        due.sort(key=lambda s: (s.last_checked_at is not None, s.last_checked_at or s.created_at))
        return [site.model_copy() for site in due[:limit]]

    async def update_site(
        self,
        site_id: str,
        *,
        last_scan_id: str | None | object = _UNSET,
        last_checked_at: datetime | None | object = _UNSET,
    ) -> None:
        site = self._sites.get(site_id)
        if site is None:
            raise RepositoryError(f"Monitored site not found: {site_id}")
        changes: dict[str, object] = {}
        if last_scan_id is not _UNSET:
            changes["last_scan_id"] = last_scan_id
        if last_checked_at is not _UNSET:
            changes["last_checked_at"] = last_checked_at
        self._sites[site_id] = site.model_copy(update=changes)
