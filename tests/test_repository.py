"""Tests for src.jobs.repository — in-memory job and site stores."""

from __future__ import annotations

from datetime import timedelta

import pytest

from src.jobs import repository
from src.models import scan


class TestInMemoryScanRepository:
    """Tests for InMemoryScanRepository."""

    @pytest.mark.asyncio
    async def test_insert_and_load(self, jobs: repository.InMemoryScanRepository) -> None:
        job_id = await jobs.insert_job("https://example.com/", "1.2.3.4")
        job = await jobs.load_job(job_id)
        assert job.status == "queued"
        assert job.url == "https://example.com/"
        assert job.requester == "1.2.3.4"

    @pytest.mark.asyncio
    async def test_load_missing(self, jobs: repository.InMemoryScanRepository) -> None:
        with pytest.raises(repository.JobNotFound):
            await jobs.load_job("nope")

    @pytest.mark.asyncio
    async def test_forward_transitions(self, jobs: repository.InMemoryScanRepository, clean_result) -> None:
        job_id = await jobs.insert_job("https://example.com/")
        await jobs.update_job(job_id, scan.JobUpdate(status="running"))
        await jobs.update_job(job_id, scan.JobUpdate(status="done", result=clean_result))
        job = await jobs.load_job(job_id)
        assert job.status == "done"
        assert job.result == clean_result

    @pytest.mark.asyncio
    async def test_skipping_running_rejected(self, jobs: repository.InMemoryScanRepository, clean_result) -> None:
        job_id = await jobs.insert_job("https://example.com/")
        with pytest.raises(repository.InvalidTransition):
            await jobs.update_job(job_id, scan.JobUpdate(status="done", result=clean_result))

    @pytest.mark.asyncio
    async def test_terminal_state_is_final(self, jobs: repository.InMemoryScanRepository) -> None:
        job_id = await jobs.insert_job("https://example.com/")
        await jobs.update_job(job_id, scan.JobUpdate(status="running"))
        await jobs.update_job(job_id, scan.JobUpdate(status="error", error="unknown: x"))
        with pytest.raises(repository.InvalidTransition):
            await jobs.update_job(job_id, scan.JobUpdate(status="running"))
        assert (await jobs.load_job(job_id)).error == "unknown: x"

    @pytest.mark.asyncio
    async def test_update_missing(self, jobs: repository.InMemoryScanRepository) -> None:
        with pytest.raises(repository.JobNotFound):
            await jobs.update_job("nope", scan.JobUpdate(status="running"))

    @pytest.mark.asyncio
    async def test_loaded_job_is_a_copy(self, jobs: repository.InMemoryScanRepository) -> None:
        job_id = await jobs.insert_job("https://example.com/")
        job = await jobs.load_job(job_id)
        job.url = "https://changed.example/"
        assert (await jobs.load_job(job_id)).url == "https://example.com/"

    @pytest.mark.asyncio
    async def test_find_recent_job(self, jobs: repository.InMemoryScanRepository) -> None:
        since = repository.utcnow() - timedelta(minutes=2)
        first = await jobs.insert_job("https://example.com/", "1.2.3.4")
        second = await jobs.insert_job("https://example.com/", "1.2.3.4")
        await jobs.insert_job("https://example.com/", "5.6.7.8")
        await jobs.insert_job("https://other.example/", "1.2.3.4")

        found = await jobs.find_recent_job("https://example.com/", "1.2.3.4", since)

        assert found is not None
        assert found.id in {first, second}
        assert found.requester == "1.2.3.4"

    @pytest.mark.asyncio
    async def test_find_recent_job_outside_window(self, jobs: repository.InMemoryScanRepository) -> None:
        await jobs.insert_job("https://example.com/", "1.2.3.4")
        future = repository.utcnow() + timedelta(seconds=1)
        assert await jobs.find_recent_job("https://example.com/", "1.2.3.4", future) is None


class TestInMemoryMonitoredSiteRepository:
    """Tests for InMemoryMonitoredSiteRepository."""

    @pytest.mark.asyncio
    async def test_upsert_is_unique_per_email_and_url(self, sites: repository.InMemoryMonitoredSiteRepository) -> None:
        first = await sites.upsert_site("https://example.com/", "a@b.de", "job-1")
        second = await sites.upsert_site("https://example.com/", "a@b.de", "job-2")
        assert first.id == second.id
        assert second.last_scan_id == "job-2"
        assert await sites.count_sites("a@b.de") == 1

    @pytest.mark.asyncio
    async def test_count_per_email(self, sites: repository.InMemoryMonitoredSiteRepository) -> None:
        await sites.upsert_site("https://a.example/", "a@b.de", "j1")
        await sites.upsert_site("https://b.example/", "a@b.de", "j2")
        await sites.upsert_site("https://a.example/", "c@d.de", "j3")
        assert await sites.count_sites("a@b.de") == 2
        assert await sites.count_sites("x@y.de") == 0

    @pytest.mark.asyncio
    async def test_due_sites_order_and_limit(self, sites: repository.InMemoryMonitoredSiteRepository) -> None:
        now = repository.utcnow()
        old = await sites.upsert_site("https://old.example/", "a@b.de", "j1")
        older = await sites.upsert_site("https://older.example/", "a@b.de", "j2")
        fresh = await sites.upsert_site("https://fresh.example/", "a@b.de", "j3")
        never = await sites.upsert_site("https://never.example/", "a@b.de", "j4")
        await sites.update_site(old.id, last_checked_at=now - timedelta(hours=30))
        await sites.update_site(older.id, last_checked_at=now - timedelta(hours=48))
        await sites.update_site(fresh.id, last_checked_at=now - timedelta(hours=1))

        due = await sites.find_due_sites(now - timedelta(hours=24), limit=5)

        assert [site.url for site in due] == [
            "https://never.example/",
            "https://older.example/",
            "https://old.example/",
        ]
        assert never.id == due[0].id
        assert len(await sites.find_due_sites(now - timedelta(hours=24), limit=1)) == 1

    @pytest.mark.asyncio
    async def test_update_site_partial(self, sites: repository.InMemoryMonitoredSiteRepository) -> None:
        site = await sites.upsert_site("https://example.com/", "a@b.de", "j1")
        await sites.update_site(site.id, last_checked_at=repository.utcnow())
        (updated,) = await sites.find_due_sites(repository.utcnow() + timedelta(seconds=1), limit=5)
        assert updated.last_scan_id == "j1"
        assert updated.last_checked_at is not None

    @pytest.mark.asyncio
    async def test_update_missing_site(self, sites: repository.InMemoryMonitoredSiteRepository) -> None:
        with pytest.raises(repository.RepositoryError):
            await sites.update_site("nope", last_scan_id="j1")
