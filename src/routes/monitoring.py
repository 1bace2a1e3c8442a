"""
Monitoring enrollment and the scheduler's monitoring trigger.
"""

from __future__ import annotations

import hmac

import fastapi
import pydantic
from starlette import responses

from src.jobs import repository
from src.monitoring import service
from src.routes import dependencies
from src.utils import logger, serialization

log = logger.create_logger("MonitorRoutes")

router = fastapi.APIRouter(prefix="/api")


class MonitorRequest(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(
        alias_generator=serialization.snake_to_camel, populate_by_name=True
    )

    email: str
    job_id: str


def is_authorized(authorization: str | None, secret: str, is_production: bool) -> bool:
    """Bearer check for the cron trigger.

    Without a configured secret the trigger is open outside production
    and closed in production.
    """
    if not secret:
        return not is_production
    return hmac.compare_digest(authorization or "", f"Bearer {secret}")


@router.post("/monitor")
async def enroll_site(
    body: MonitorRequest,
    services: dependencies.AppServices = fastapi.Depends(dependencies.get_services),
) -> responses.JSONResponse:
    """Start monitoring the URL of a completed scan."""
    try:
        site = await services.monitoring.enroll(body.email, body.job_id)
    except service.EnrollmentError as exc:
        return dependencies.error_response(exc.message, exc.status_code)
    except repository.RepositoryError as exc:
        log.error("Could not store monitored site", {"error": str(exc)})
        return dependencies.error_response("Database error while saving", 500)
    return responses.JSONResponse({"ok": True, "siteId": site.id})


@router.api_route("/cron/run-monitoring", methods=["GET", "POST"])
async def run_monitoring(
    request: fastapi.Request,
    services: dependencies.AppServices = fastapi.Depends(dependencies.get_services),
) -> responses.JSONResponse:
    """Re-scan due sites and send alerts for regressions."""
    settings = services.settings
    if not is_authorized(request.headers.get("authorization"), settings.monitor_cron_secret, settings.is_production):
        return dependencies.error_response("Unauthorized", 401)

    try:
        outcomes = await services.monitoring.run_due()
    except repository.RepositoryError as exc:
        log.error("Could not load monitored sites", {"error": str(exc)})
        return dependencies.error_response("Database error", 500)

    return responses.JSONResponse({
        "ok": True,
        "processed": len(outcomes),
        "results": [outcome.model_dump() for outcome in outcomes],
    })
