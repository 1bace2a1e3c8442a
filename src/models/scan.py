"""Pydantic models for scan jobs and their results."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

import pydantic

from src.utils import errors, serialization

ScanStatus = Literal["queued", "running", "done", "error"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"done", "error"})

# Allowed forward moves of the job state machine.
TRANSITIONS: dict[str, frozenset[str]] = {
    "queued": frozenset({"running"}),
    "running": frozenset({"done", "error"}),
    "done": frozenset(),
    "error": frozenset(),
}


def can_transition(current: ScanStatus, target: ScanStatus) -> bool:
    """Whether the state machine permits ``current -> target``."""
    return target in TRANSITIONS[current]


class _ApiModel(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(
        alias_generator=serialization.snake_to_camel, populate_by_name=True
    )


class ValidatedTarget(_ApiModel):
    """A URL that passed the static guard."""

    url: str
    hostname: str


class ObservedCookie(_ApiModel):
    """A cookie visible to the browser context at the end of a scan."""

    name: str
    domain: str
    value: str


class ScanMeta(_ApiModel):
    """Bookkeeping about a single scan run."""

    final_url: str
    http_status: int | None
    duration_ms: int
    request_count: int
    external_host_count: int
    cookie_count: int


class ScanResult(_ApiModel):
    """Privacy indicators observed while rendering one page.

    Immutable once built; ``meta`` counts always agree with the
    host and cookie collections.
    """

    model_config = pydantic.ConfigDict(
        alias_generator=serialization.snake_to_camel,
        populate_by_name=True,
        frozen=True,
    )

    uses_external_fonts: bool
    uses_analytics: bool
    uses_social_pixel: bool
    sets_tracking_cookie: bool
    has_legal_notice: bool
    has_privacy_policy: bool
    external_hosts: list[str] = pydantic.Field(default_factory=list)
    cookies: list[ObservedCookie] = pydantic.Field(default_factory=list)
    meta: ScanMeta

    @pydantic.model_validator(mode="after")
    def check_counts(self) -> ScanResult:
        if self.meta.external_host_count != len(set(self.external_hosts)):
            raise ValueError("meta.externalHostCount does not match externalHosts")
        if self.meta.cookie_count != len(self.cookies):
            raise ValueError("meta.cookieCount does not match cookies")
        return self


class ScanJob(_ApiModel):
    """A scan request and its lifecycle state.

    ``result`` is set iff ``status == "done"``; ``error`` (stored
    as ``"<code>: <detail>"``) is set iff ``status == "error"``.
    """

    id: str
    url: str
    status: ScanStatus = "queued"
    result: ScanResult | None = None
    error: str | None = None
    created_at: datetime
    requester: str | None = None

    @pydantic.model_validator(mode="after")
    def check_payload(self) -> ScanJob:
        if (self.result is not None) != (self.status == "done"):
            raise ValueError("result must be present exactly when status is 'done'")
        if (self.error is not None) != (self.status == "error"):
            raise ValueError("error must be present exactly when status is 'error'")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def error_info(self) -> errors.ScanErrorInfo | None:
        """Decoded error code and detail, when the job failed."""
        if self.status != "error":
            return None
        return errors.decode_error(self.error)


class JobUpdate(pydantic.BaseModel):
    """Fields written by a single state transition."""

    status: ScanStatus
    result: ScanResult | None = None
    error: str | None = None


class ScanStatusResponse(_ApiModel):
    """Polling view of a job returned by the status endpoint."""

    id: str
    url: str
    status: ScanStatus
    created_at: datetime
    result: ScanResult | None = None
    error_code: errors.ErrorKind | None = None
    error_detail: str | None = None

    @classmethod
    def from_job(cls, job: ScanJob) -> ScanStatusResponse:
        info = job.error_info()
        return cls(
            id=job.id,
            url=job.url,
            status=job.status,
            created_at=job.created_at,
            result=job.result,
            error_code=info.code if info else None,
            error_detail=info.detail if info else None,
        )
