"""Shared request-scoped helpers for the API routers."""

from __future__ import annotations

import dataclasses

import fastapi
from starlette import responses

from src.config import ScannerSettings
from src.jobs import orchestrator, repository, submission
from src.monitoring import service
from src.utils import errors


@dataclasses.dataclass
class AppServices:
    """Everything the routers need, built once per application."""

    settings: ScannerSettings
    jobs: repository.ScanRepository
    sites: repository.MonitoredSiteRepository
    orchestrator: orchestrator.JobOrchestrator
    submission: submission.SubmissionService
    monitoring: service.MonitoringService


def get_services(request: fastapi.Request) -> AppServices:
    return request.app.state.services


def requester_identity(request: fastapi.Request) -> str:
    """First ``X-Forwarded-For`` entry, else the peer address, else ``"dev"``."""
    forwarded = request.headers.get("x-forwarded-for", "")
    first = forwarded.split(",")[0].strip()
    if first:
        return first
    if request.client and request.client.host:
        return request.client.host
    return "dev"


def error_response(message: str, status_code: int, code: errors.ErrorKind | None = None) -> responses.JSONResponse:
    body: dict[str, str] = {"error": message}
    if code is not None:
        body["errorCode"] = code
    return responses.JSONResponse(body, status_code=status_code)


def scan_error_response(error: errors.ScanError) -> responses.JSONResponse:
    """Guard rejections: ``dns_failed`` is the caller's input, ``blocked_url`` is policy."""
    status_code = 403 if error.code == "blocked_url" else 400
    return error_response(error.detail, status_code, error.code)
