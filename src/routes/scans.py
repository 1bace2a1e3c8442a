"""
Scan submission, status polling and the scheduler's scan trigger.
"""

from __future__ import annotations

import asyncio
import math
import uuid

import fastapi
import pydantic
from starlette import responses

from src.jobs import admission, repository, submission
from src.models import scan
from src.routes import dependencies
from src.utils import errors, logger, serialization

log = logger.create_logger("ScanRoutes")

router = fastapi.APIRouter(prefix="/api")


class ScanRequest(pydantic.BaseModel):
    url: str


class RunRequest(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(
        alias_generator=serialization.snake_to_camel, populate_by_name=True
    )

    job_id: str


def _is_uuid(value: str) -> bool:
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


def _refusal_message(decision: admission.AdmissionDecision, retry_after: int) -> str:
    if decision.reason == "cooldown":
        return f"Please wait {retry_after} seconds before starting another scan."
    return f"Too many scans. Please try again in {math.ceil(retry_after / 60)} minutes."


@router.post("/scan", status_code=201)
async def submit_scan(
    body: ScanRequest,
    request: fastapi.Request,
    services: dependencies.AppServices = fastapi.Depends(dependencies.get_services),
) -> responses.JSONResponse:
    """Validate a URL and queue a scan for it."""
    requester = dependencies.requester_identity(request)

    try:
        outcome = await services.submission.submit(body.url, requester)
    except submission.AdmissionRefused as exc:
        retry_after = max(1, math.ceil(exc.decision.retry_after_seconds))
        return responses.JSONResponse(
            {"error": _refusal_message(exc.decision, retry_after)},
            status_code=429,
            headers={"Retry-After": str(retry_after), "X-RateLimit-Remaining": "0"},
        )
    except errors.ScanError as exc:
        log.warn("Submission rejected", {"url": body.url, "code": exc.code, "detail": exc.detail})
        return dependencies.scan_error_response(exc)
    except repository.RepositoryError as exc:
        log.error("Could not create scan job", {"error": str(exc)})
        return dependencies.error_response("Database error while creating the scan", 500)

    if outcome.reused:
        return responses.JSONResponse({"jobId": outcome.job_id, "reused": True}, status_code=200)
    return responses.JSONResponse({"jobId": outcome.job_id}, status_code=201)


@router.get("/scan/{job_id}")
async def get_scan(
    job_id: str,
    services: dependencies.AppServices = fastapi.Depends(dependencies.get_services),
) -> responses.JSONResponse:
    """Current state of a job; polled by clients until it is terminal."""
    headers = {"Cache-Control": "no-store"}
    if not _is_uuid(job_id):
        return responses.JSONResponse({"error": "Invalid scan id"}, status_code=400, headers=headers)

    try:
        job = await services.jobs.load_job(job_id)
    except repository.JobNotFound:
        return responses.JSONResponse({"error": "Scan not found"}, status_code=404, headers=headers)
    except repository.RepositoryError as exc:
        log.error("Could not load scan job", {"jobId": job_id, "error": str(exc)})
        return responses.JSONResponse({"error": "Database error"}, status_code=500, headers=headers)

    payload = serialization.to_api_dict(scan.ScanStatusResponse.from_job(job))
    return responses.JSONResponse(payload, headers=headers)


@router.post("/run", status_code=202)
async def trigger_scan(
    body: RunRequest,
    services: dependencies.AppServices = fastapi.Depends(dependencies.get_services),
) -> responses.JSONResponse:
    """Acknowledge a job id and execute it in the background."""
    limit = services.settings.trigger_timeout_seconds
    try:
        async with asyncio.timeout(limit):
            await services.jobs.load_job(body.job_id)
    except TimeoutError:
        log.error("Scan trigger timed out", {"jobId": body.job_id, "timeout": limit})
        return dependencies.error_response("Scan trigger timed out", 504)
    except repository.JobNotFound:
        return dependencies.error_response("Scan not found", 404)
    except repository.RepositoryError as exc:
        log.error("Could not load scan job", {"jobId": body.job_id, "error": str(exc)})
        return dependencies.error_response("Database error", 500)

    services.orchestrator.dispatch(body.job_id)
    log.info("Scan triggered", {"jobId": body.job_id})
    return responses.JSONResponse({"ok": True, "jobId": body.job_id}, status_code=202)
