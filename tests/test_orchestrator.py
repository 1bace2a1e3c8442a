"""Tests for the scan job orchestrator.

Covers the queued -> running -> done | error transitions, the overall
timeout, re-entry on finished jobs, repository failures and
cancellation of pooled jobs.
"""

from __future__ import annotations

import asyncio

import pytest

from src.jobs import repository
from src.jobs.orchestrator import JobOrchestrator
from src.jobs.worker_pool import WorkerPool
from src.models import scan
from src.utils.errors import ScanError, decode_error


class RecordingRepository(repository.InMemoryScanRepository):
    """Job store that remembers every status it was asked to write."""

    def __init__(self) -> None:
        super().__init__()
        self.writes: list[str] = []

    async def update_job(self, job_id: str, update: scan.JobUpdate) -> None:
        self.writes.append(update.status)
        await super().update_job(job_id, update)


def _scanner_returning(result: scan.ScanResult):
    calls: list[str] = []

    async def scanner(url: str) -> scan.ScanResult:
        calls.append(url)
        return result

    scanner.calls = calls  # type: ignore[attr-defined]
    return scanner


def _scanner_raising(error: BaseException):
    async def scanner(url: str) -> scan.ScanResult:
        raise error

    return scanner


# ── Happy Path ──────────────────────────────────────────────────


class TestRunJob:
    """Tests for JobOrchestrator.run_job()."""

    @pytest.mark.asyncio
    async def test_queued_to_done(self, settings, clean_result) -> None:
        jobs = RecordingRepository()
        scanner = _scanner_returning(clean_result)
        orchestrator = JobOrchestrator(jobs, settings, scanner=scanner)
        job_id = await jobs.insert_job("https://example.com/")

        update = await orchestrator.run_job(job_id)

        assert update is not None and update.status == "done"
        assert jobs.writes == ["running", "done"]
        job = await jobs.load_job(job_id)
        assert job.status == "done"
        assert job.result == clean_result
        assert scanner.calls == ["https://example.com/"]  # type: ignore[attr-defined]

    @pytest.mark.asyncio
    async def test_scan_error_keeps_code(self, settings) -> None:
        jobs = RecordingRepository()
        orchestrator = JobOrchestrator(
            jobs, settings, scanner=_scanner_raising(ScanError("blocked_url", "Redirect to blocked address"))
        )
        job_id = await jobs.insert_job("https://example.com/")

        await orchestrator.run_job(job_id)

        job = await jobs.load_job(job_id)
        assert jobs.writes == ["running", "error"]
        assert job.status == "error"
        assert job.error == "blocked_url: Redirect to blocked address"

    @pytest.mark.asyncio
    async def test_unexpected_error_is_classified(self, settings) -> None:
        jobs = repository.InMemoryScanRepository()
        orchestrator = JobOrchestrator(jobs, settings, scanner=_scanner_raising(RuntimeError("kaputt")))
        job_id = await jobs.insert_job("https://example.com/")

        await orchestrator.run_job(job_id)

        info = decode_error((await jobs.load_job(job_id)).error)
        assert info.code == "unknown"
        assert info.detail == "kaputt"

    @pytest.mark.asyncio
    async def test_overall_timeout_is_navigation_timeout(self, settings) -> None:
        settings = settings.model_copy(update={"job_timeout_seconds": 0.05})

        async def hanging(url: str) -> scan.ScanResult:
            await asyncio.sleep(10)
            raise AssertionError("unreachable")

        jobs = repository.InMemoryScanRepository()
        orchestrator = JobOrchestrator(jobs, settings, scanner=hanging)
        job_id = await jobs.insert_job("https://example.com/")

        await orchestrator.run_job(job_id)

        info = decode_error((await jobs.load_job(job_id)).error)
        assert info.code == "navigation_timeout"
        assert "Overall timeout" in info.detail


# ── Re-entry ────────────────────────────────────────────────────


class TestReentry:
    """A job that already left ``queued`` is never scanned again."""

    @pytest.mark.asyncio
    async def test_rerun_done_job_is_noop(self, settings, clean_result) -> None:
        jobs = RecordingRepository()
        scanner = _scanner_returning(clean_result)
        orchestrator = JobOrchestrator(jobs, settings, scanner=scanner)
        job_id = await jobs.insert_job("https://example.com/")
        await orchestrator.run_job(job_id)

        assert await orchestrator.run_job(job_id) is None

        assert jobs.writes == ["running", "done"]
        assert len(scanner.calls) == 1  # type: ignore[attr-defined]
        assert (await jobs.load_job(job_id)).status == "done"

    @pytest.mark.asyncio
    async def test_rerun_error_job_is_noop(self, settings) -> None:
        jobs = repository.InMemoryScanRepository()
        orchestrator = JobOrchestrator(jobs, settings, scanner=_scanner_raising(RuntimeError("x")))
        job_id = await jobs.insert_job("https://example.com/")
        await orchestrator.run_job(job_id)
        before = await jobs.load_job(job_id)

        assert await orchestrator.run_job(job_id) is None
        assert await jobs.load_job(job_id) == before

    @pytest.mark.asyncio
    async def test_unknown_job(self, settings, clean_result) -> None:
        scanner = _scanner_returning(clean_result)
        orchestrator = JobOrchestrator(repository.InMemoryScanRepository(), settings, scanner=scanner)
        assert await orchestrator.run_job("missing") is None
        assert scanner.calls == []  # type: ignore[attr-defined]


# ── Persistence Failures ────────────────────────────────────────


class TestPersistenceFailures:
    """Tests for repository failures around the scan."""

    @pytest.mark.asyncio
    async def test_running_write_failure_aborts(self, settings, clean_result, failing_jobs) -> None:
        jobs = failing_jobs({"running"})
        scanner = _scanner_returning(clean_result)
        orchestrator = JobOrchestrator(jobs, settings, scanner=scanner)
        job_id = await jobs.insert_job("https://example.com/")

        assert await orchestrator.run_job(job_id) is None

        assert scanner.calls == []  # type: ignore[attr-defined]
        assert (await jobs.load_job(job_id)).status == "queued"

    @pytest.mark.asyncio
    async def test_done_write_failure_marks_error(self, settings, clean_result, failing_jobs) -> None:
        jobs = failing_jobs({"done"})
        orchestrator = JobOrchestrator(jobs, settings, scanner=_scanner_returning(clean_result))
        job_id = await jobs.insert_job("https://example.com/")

        update = await orchestrator.run_job(job_id)

        assert update is not None and update.status == "error"
        job = await jobs.load_job(job_id)
        assert job.status == "error"
        assert decode_error(job.error).code == "unknown"

    @pytest.mark.asyncio
    async def test_error_write_failure_is_swallowed(self, settings, failing_jobs) -> None:
        jobs = failing_jobs({"error"})
        orchestrator = JobOrchestrator(jobs, settings, scanner=_scanner_raising(RuntimeError("x")))
        job_id = await jobs.insert_job("https://example.com/")

        update = await orchestrator.run_job(job_id)

        assert update is not None and update.status == "error"
        assert (await jobs.load_job(job_id)).status == "running"


# ── Dispatch ────────────────────────────────────────────────────


class TestSubmitAndDispatch:
    """Tests for submit() and dispatch()."""

    @pytest.mark.asyncio
    async def test_uses_injected_empty_pool(self, settings, clean_result) -> None:
        """An empty pool is still the pool the orchestrator dispatches to."""
        jobs = repository.InMemoryScanRepository()
        pool = WorkerPool()
        assert len(pool) == 0
        orchestrator = JobOrchestrator(jobs, settings, pool=pool, scanner=_scanner_returning(clean_result))

        job_id = await orchestrator.submit("https://example.com/")

        assert orchestrator.pool is pool
        assert len(pool) == 1
        await pool.wait_idle()
        assert (await jobs.load_job(job_id)).status == "done"

    @pytest.mark.asyncio
    async def test_submit_returns_before_scan_finishes(self, settings, clean_result) -> None:
        release = asyncio.Event()

        async def slow(url: str) -> scan.ScanResult:
            await release.wait()
            return clean_result

        jobs = repository.InMemoryScanRepository()
        pool = WorkerPool()
        orchestrator = JobOrchestrator(jobs, settings, pool=pool, scanner=slow)

        job_id = await orchestrator.submit("https://example.com/", "1.2.3.4")
        await asyncio.sleep(0.01)

        assert (await jobs.load_job(job_id)).status == "running"
        release.set()
        await pool.wait_idle()
        assert (await jobs.load_job(job_id)).status == "done"

    @pytest.mark.asyncio
    async def test_cancelled_job_is_marked_error(self, settings) -> None:
        async def hanging(url: str) -> scan.ScanResult:
            await asyncio.sleep(10)
            raise AssertionError("unreachable")

        jobs = repository.InMemoryScanRepository()
        pool = WorkerPool()
        orchestrator = JobOrchestrator(jobs, settings, pool=pool, scanner=hanging)
        job_id = await orchestrator.submit("https://example.com/")
        await asyncio.sleep(0.01)

        await pool.shutdown()

        job = await jobs.load_job(job_id)
        assert job.status == "error"
        assert decode_error(job.error).detail == "Scan was cancelled"
